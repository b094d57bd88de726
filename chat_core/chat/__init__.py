"""单轮对话的服务端核心：组装模型输入、驱动流式会话、落库对账。"""
