"""
MessageValidator - structural checks for agent messages

Collects every problem in a raw message instead of failing on the first
one, so an agent gets the whole list back in a single round trip.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple, Union

from pydantic import ValidationError

from ..errors import InvalidMessageError
from ..models.message import (
    AgentMessage,
    BlockerRequirement,
    BlockerSeverity,
    MessageType,
    PayloadStatus,
)

logger = logging.getLogger(__name__)

# Date with optional time part: 2024-01-15, 2024-01-15T10:30:00Z, ...+09:00
ISO_8601 = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"([T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?)?$"
)

_MESSAGE_TYPES = {member.value for member in MessageType}
_PAYLOAD_STATUSES = {member.value for member in PayloadStatus}
_SEVERITIES = {member.value for member in BlockerSeverity}
_REQUIREMENTS = {member.value for member in BlockerRequirement}


@dataclass
class MessageValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": self.errors, "warnings": self.warnings}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class MessageValidator:
    """
    Validator for the agent message wire format.

    Errors make a message unroutable. Warnings flag messages that are
    well-formed but probably incomplete; they never block routing.
    """

    def validate(self, message: Union[Mapping[str, Any], AgentMessage]) -> MessageValidationResult:
        """
        Validate a message without touching any state.

        Args:
            message: Raw wire dict or an already-typed AgentMessage

        Returns:
            MessageValidationResult with every error and warning found
        """
        if isinstance(message, AgentMessage):
            data = message.to_wire()
        elif isinstance(message, Mapping):
            data = message
        else:
            return MessageValidationResult(
                valid=False,
                errors=[f"Message must be an object, got {type(message).__name__}"],
            )

        errors: List[str] = []
        warnings: List[str] = []

        metadata = data.get("metadata")
        payload = data.get("payload")

        if isinstance(metadata, Mapping):
            self._check_metadata(metadata, errors)
        else:
            errors.append("Missing metadata")
            metadata = {}

        if isinstance(payload, Mapping):
            self._check_payload(payload, errors)
        else:
            errors.append("Missing payload")
            payload = {}

        if not errors:
            self._collect_warnings(data, metadata, payload, warnings)

        return MessageValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def parse(self, message: Union[Mapping[str, Any], AgentMessage]) -> AgentMessage:
        """
        Validate and build the typed message.

        Raises:
            InvalidMessageError: If the message has any validation error
        """
        typed, _ = self.parse_with_warnings(message)
        return typed

    def parse_with_warnings(
        self,
        message: Union[Mapping[str, Any], AgentMessage],
    ) -> Tuple[AgentMessage, List[str]]:
        """
        Validate once and build the typed message, keeping the warnings.

        Raises:
            InvalidMessageError: If the message has any validation error
        """
        result = self.validate(message)
        if not result.valid:
            raise InvalidMessageError(result.errors, result.warnings)

        for warning in result.warnings:
            logger.warning(f"Agent message warning: {warning}")

        if isinstance(message, AgentMessage):
            return message, result.warnings

        try:
            return AgentMessage.model_validate(message), result.warnings
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            ]
            raise InvalidMessageError(errors, result.warnings) from e

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_metadata(self, metadata: Mapping[str, Any], errors: List[str]) -> None:
        for name in ("from", "to", "timestamp", "messageType"):
            if _is_blank(metadata.get(name)):
                errors.append(f"Missing metadata.{name}")

        timestamp = metadata.get("timestamp")
        if not _is_blank(timestamp) and (
            not isinstance(timestamp, str) or not ISO_8601.match(timestamp)
        ):
            errors.append(f"metadata.timestamp is not ISO-8601: {timestamp!r}")

        message_type = metadata.get("messageType")
        if not _is_blank(message_type) and message_type not in _MESSAGE_TYPES:
            errors.append(f"Unknown metadata.messageType: {message_type!r}")

    def _check_payload(self, payload: Mapping[str, Any], errors: List[str]) -> None:
        for name in ("status", "summary"):
            if _is_blank(payload.get(name)):
                errors.append(f"Missing payload.{name}")

        status = payload.get("status")
        if not _is_blank(status) and status not in _PAYLOAD_STATUSES:
            errors.append(f"Unknown payload.status: {status!r}")

        artifacts = payload.get("artifacts") or []
        if not isinstance(artifacts, list):
            errors.append("payload.artifacts must be a list")
            artifacts = []
        for position, artifact in enumerate(artifacts):
            if not isinstance(artifact, Mapping):
                errors.append(f"payload.artifacts[{position}] must be an object")
                continue
            for name in ("path", "type"):
                if _is_blank(artifact.get(name)):
                    errors.append(f"payload.artifacts[{position}] missing {name}")

        blockers = payload.get("blockers") or []
        if not isinstance(blockers, list):
            errors.append("payload.blockers must be a list")
            blockers = []
        for position, blocker in enumerate(blockers):
            self._check_blocker(position, blocker, errors)

    def _check_blocker(self, position: int, blocker: Any, errors: List[str]) -> None:
        prefix = f"payload.blockers[{position}]"
        if not isinstance(blocker, Mapping):
            errors.append(f"{prefix} must be an object")
            return

        if _is_blank(blocker.get("description")):
            errors.append(f"{prefix} missing description")

        severity = blocker.get("severity")
        if _is_blank(severity):
            errors.append(f"{prefix} missing severity")
        elif severity not in _SEVERITIES:
            errors.append(f"{prefix} has unknown severity {severity!r}")

        requires = blocker.get("requires")
        if _is_blank(requires):
            errors.append(f"{prefix} missing requires")
        elif requires not in _REQUIREMENTS:
            errors.append(f"{prefix} has unknown requires {requires!r}")

    def _collect_warnings(
        self,
        data: Mapping[str, Any],
        metadata: Mapping[str, Any],
        payload: Mapping[str, Any],
        warnings: List[str],
    ) -> None:
        status = payload.get("status")
        if status == PayloadStatus.SUCCESS.value and not payload.get("artifacts"):
            warnings.append("Success reported without any artifacts")
        if status == PayloadStatus.FAILURE.value and not data.get("errorDetails"):
            warnings.append("Failure reported without errorDetails")
        if metadata.get("messageType") == MessageType.HANDOFF.value and not data.get("handoff"):
            warnings.append("Handoff message without a handoff block")
