from __future__ import annotations

from typing import Any, Dict, Optional

from ..agent_types import AgentTool, AgentToolResult, OutboundMessage, ToolContext, text_result
from ..bus import MessageBus

MEDIA_TYPES = {"image", "audio", "video"}
MESSAGE_TYPES = {"text"} | MEDIA_TYPES


class MessageTool(AgentTool):
    name = "message"
    description = (
        "Send a message to the user. Supports text, image, audio, and video. "
        "Use this to send files or communicate."
    )
    parameters = {
        "type": "object",
        "properties": {
            "content": {"type": "string", "description": "The message content (text body or caption)"},
            "type": {
                "type": "string",
                "description": "Message type: text, image, audio, video",
                "enum": sorted(MESSAGE_TYPES),
            },
            "media": {
                "type": "string",
                "description": "Path or URL to the media file (required for image/audio/video)",
            },
            "channel": {"type": "string", "description": "Optional: target channel (telegram, feishu, etc.)"},
            "chat_id": {"type": "string", "description": "Optional: target chat/user ID"},
        },
        "required": [],
    }
    label = "Message"

    def __init__(self, bus: MessageBus) -> None:
        self.bus = bus

    async def execute(
        self,
        tool_call_id: str,
        params: Dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> AgentToolResult:
        del tool_call_id
        content = str(params.get("content") or "")
        message_type = str(params.get("type") or "text").strip().lower()
        media = str(params.get("media") or "").strip()

        if message_type not in MESSAGE_TYPES:
            return text_result(f"message error: unsupported type {message_type}", ok=False)
        if message_type in MEDIA_TYPES and not media:
            return text_result(f"message error: media path/url is required for {message_type} message", ok=False)
        if message_type == "text" and not content:
            return text_result("message error: content is required for text message", ok=False)

        channel = str(params.get("channel") or (context.channel if context else "") or "")
        chat_id = str(params.get("chat_id") or (context.chat_id if context else "") or "")
        if not channel or not chat_id:
            return text_result("message error: no target channel/chat specified", ok=False)

        await self.bus.publish_outbound(
            OutboundMessage(
                channel=channel,
                chat_id=chat_id,
                content=content,
                media=media,
                message_type=message_type,
            )
        )
        return text_result(
            f"Message ({message_type}) sent to {channel}:{chat_id}",
            channel=channel,
            chat_id=chat_id,
            type=message_type,
        )


__all__ = ["MessageTool"]
