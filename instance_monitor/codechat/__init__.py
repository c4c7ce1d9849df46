"""Client for the CodeChat messaging-gateway API."""

from .client import CodeChatClient, classify_error
from .models import ConnectResult, InstanceDetail, InstanceSummary

__all__ = ["CodeChatClient", "ConnectResult", "InstanceDetail", "InstanceSummary", "classify_error"]
