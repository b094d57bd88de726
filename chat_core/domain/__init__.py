"""领域层模型与协议。

包含：
- models: Part / UIMessage / ModelMessage 以及 Provider 请求与流式增量模型。
- conversation: 会话与持久化消息模型及 MessageStore 抽象。
- exceptions: 业务异常类型定义。
"""
