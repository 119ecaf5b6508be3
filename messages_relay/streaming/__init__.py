"""
Streaming translation: tool-call assembly and Messages event transcoding.
"""

from messages_relay.streaming.assembler import ArgsMergeStrategy, ToolCallAssembler
from messages_relay.streaming.transcoder import StreamState, StreamTranscoder

__all__ = ["ArgsMergeStrategy", "StreamState", "StreamTranscoder", "ToolCallAssembler"]
