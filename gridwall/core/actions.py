"""
Client -> server actions.

Each action type is a frozen dataclass with a class-level TYPE. TYPE's value
is both the wire `type` string and the capability a role needs to perform
it. parseAction() turns a decoded JSON message into exactly one variant or
raises ActionError.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Type


class ActionType(str, Enum):
    """Wire action types (also capability names)"""
    SET_LISTENING_VIEW = "set-listening-view"
    SET_VIEW_BACKGROUND_LISTENING = "set-view-background-listening"
    SET_VIEW_BLURRED = "set-view-blurred"
    RELOAD_VIEW = "reload-view"
    ROTATE_STREAM = "rotate-stream"
    BROWSE = "browse"
    DEV_TOOLS = "dev-tools"
    UPDATE_CUSTOM_STREAM = "update-custom-stream"
    DELETE_CUSTOM_STREAM = "delete-custom-stream"
    SET_STREAM_CENSORED = "set-stream-censored"
    SET_STREAM_RUNNING = "set-stream-running"
    CREATE_INVITE = "create-invite"
    DELETE_TOKEN = "delete-token"


class ActionError(ValueError):
    """Message payload does not match its declared action type"""


@dataclass(frozen=True)
class Action:
    TYPE: ClassVar[ActionType]
    requestId: Optional[Any] = None

    @property
    def capability(self) -> str:
        return self.TYPE.value

    @classmethod
    def fromMessage(cls, message: Dict[str, Any]) -> 'Action':
        raise NotImplementedError


def _viewIdx(message: Dict[str, Any], allowNone: bool = False) -> Optional[int]:
    value = message.get('viewIdx')
    if value is None and allowNone:
        return None
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ActionError("viewIdx must be a non-negative integer")
    return value


def _string(message: Dict[str, Any], key: str) -> str:
    value = message.get(key)
    if not isinstance(value, str) or not value:
        raise ActionError(f"{key} must be a non-empty string")
    return value


def _flag(message: Dict[str, Any], key: str) -> bool:
    value = message.get(key)
    if not isinstance(value, bool):
        raise ActionError(f"{key} must be a boolean")
    return value


@dataclass(frozen=True)
class SetListeningView(Action):
    TYPE: ClassVar[ActionType] = ActionType.SET_LISTENING_VIEW
    viewIdx: Optional[int] = None  # None: stop listening

    @classmethod
    def fromMessage(cls, message):
        return cls(viewIdx=_viewIdx(message, allowNone=True), requestId=message.get('id'))


@dataclass(frozen=True)
class SetViewBackgroundListening(Action):
    TYPE: ClassVar[ActionType] = ActionType.SET_VIEW_BACKGROUND_LISTENING
    viewIdx: int = 0
    listening: bool = False

    @classmethod
    def fromMessage(cls, message):
        return cls(viewIdx=_viewIdx(message), listening=_flag(message, 'listening'),
                   requestId=message.get('id'))


@dataclass(frozen=True)
class SetViewBlurred(Action):
    TYPE: ClassVar[ActionType] = ActionType.SET_VIEW_BLURRED
    viewIdx: int = 0
    blurred: bool = False

    @classmethod
    def fromMessage(cls, message):
        return cls(viewIdx=_viewIdx(message), blurred=_flag(message, 'blurred'),
                   requestId=message.get('id'))


@dataclass(frozen=True)
class ReloadView(Action):
    TYPE: ClassVar[ActionType] = ActionType.RELOAD_VIEW
    viewIdx: int = 0

    @classmethod
    def fromMessage(cls, message):
        return cls(viewIdx=_viewIdx(message), requestId=message.get('id'))


@dataclass(frozen=True)
class DevTools(Action):
    TYPE: ClassVar[ActionType] = ActionType.DEV_TOOLS
    viewIdx: int = 0

    @classmethod
    def fromMessage(cls, message):
        return cls(viewIdx=_viewIdx(message), requestId=message.get('id'))


@dataclass(frozen=True)
class RotateStream(Action):
    TYPE: ClassVar[ActionType] = ActionType.ROTATE_STREAM
    url: str = ''
    rotation: int = 0

    @classmethod
    def fromMessage(cls, message):
        rotation = message.get('rotation')
        if not isinstance(rotation, int) or isinstance(rotation, bool):
            raise ActionError("rotation must be an integer")
        return cls(url=_string(message, 'url'), rotation=rotation, requestId=message.get('id'))


@dataclass(frozen=True)
class Browse(Action):
    TYPE: ClassVar[ActionType] = ActionType.BROWSE
    url: str = ''

    @classmethod
    def fromMessage(cls, message):
        return cls(url=_string(message, 'url'), requestId=message.get('id'))


@dataclass(frozen=True)
class UpdateCustomStream(Action):
    TYPE: ClassVar[ActionType] = ActionType.UPDATE_CUSTOM_STREAM
    url: str = ''
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def fromMessage(cls, message):
        data = message.get('data') or {}
        if not isinstance(data, dict):
            raise ActionError("data must be an object")
        return cls(url=_string(message, 'url'), data=data, requestId=message.get('id'))


@dataclass(frozen=True)
class DeleteCustomStream(Action):
    TYPE: ClassVar[ActionType] = ActionType.DELETE_CUSTOM_STREAM
    url: str = ''

    @classmethod
    def fromMessage(cls, message):
        return cls(url=_string(message, 'url'), requestId=message.get('id'))


@dataclass(frozen=True)
class SetStreamCensored(Action):
    TYPE: ClassVar[ActionType] = ActionType.SET_STREAM_CENSORED
    isCensored: bool = False

    @classmethod
    def fromMessage(cls, message):
        return cls(isCensored=_flag(message, 'isCensored'), requestId=message.get('id'))


@dataclass(frozen=True)
class SetStreamRunning(Action):
    TYPE: ClassVar[ActionType] = ActionType.SET_STREAM_RUNNING
    isStreamRunning: bool = False

    @classmethod
    def fromMessage(cls, message):
        return cls(isStreamRunning=_flag(message, 'isStreamRunning'), requestId=message.get('id'))


@dataclass(frozen=True)
class CreateInvite(Action):
    TYPE: ClassVar[ActionType] = ActionType.CREATE_INVITE
    name: str = ''
    role: str = ''

    @classmethod
    def fromMessage(cls, message):
        return cls(name=_string(message, 'name'), role=_string(message, 'role'),
                   requestId=message.get('id'))


@dataclass(frozen=True)
class DeleteToken(Action):
    TYPE: ClassVar[ActionType] = ActionType.DELETE_TOKEN
    tokenId: str = ''

    @classmethod
    def fromMessage(cls, message):
        return cls(tokenId=_string(message, 'tokenId'), requestId=message.get('id'))


ACTION_CLASSES: Dict[ActionType, Type[Action]] = {
    cls.TYPE: cls for cls in (
        SetListeningView, SetViewBackgroundListening, SetViewBlurred, ReloadView,
        RotateStream, Browse, DevTools, UpdateCustomStream, DeleteCustomStream,
        SetStreamCensored, SetStreamRunning, CreateInvite, DeleteToken,
    )
}

# Handled by the sync layer itself; everything else goes to the action handler
LOCAL_ACTIONS = frozenset({
    ActionType.CREATE_INVITE,
    ActionType.DELETE_TOKEN,
    ActionType.UPDATE_CUSTOM_STREAM,
    ActionType.DELETE_CUSTOM_STREAM,
    ActionType.ROTATE_STREAM,
})


def parseAction(message: Dict[str, Any]) -> Action:
    try:
        actionType = ActionType(message.get('type'))
    except ValueError:
        raise ActionError(f"Unknown action type: {message.get('type')!r}")
    return ACTION_CLASSES[actionType].fromMessage(message)
