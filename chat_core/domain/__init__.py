"""领域层模型与协议。

包含：
- fragments: 消息内容片段（文本 / 图片引用 / 错误 / 占位符 / 附件）。
- message: 消息记录 DMessage。
- conversation: 会话记录 DConversation、分叉复制及 ChatActions 协议。
- tokens: token 估算与缓存规则。
- ids: 不透明 ID 生成。
- exceptions: 业务异常类型定义。
"""
