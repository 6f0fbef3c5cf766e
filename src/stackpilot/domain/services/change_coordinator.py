"""Applies rendered templates to stacks as named change sets."""

from __future__ import annotations

import structlog

from stackpilot.domain.models.stack import (
    ChangeMode,
    CredentialContext,
    new_change_set_name,
    StackChangeRequest,
)
from stackpilot.domain.ports.services import (
    StackAlreadyExistsError,
    StackBackend,
)
from stackpilot.infrastructure.observability.metrics import STACK_CHANGES_TOTAL


logger = structlog.get_logger(__name__)


class ChangeCoordinator:
    """Submits one change set per call and never retries.

    The coordinator holds no state between calls. Idempotency is the
    caller's decision: a ``create`` change against an existing stack raises
    ``StackAlreadyExistsError`` unchanged so the caller can treat it as
    already provisioned; every other backend failure is wrapped in
    ``ChangeApplicationError`` carrying the stack name.
    """

    def __init__(self, backend: StackBackend) -> None:
        self._backend = backend

    @staticmethod
    def new_change_set_name(stack_name: str) -> str:
        if not stack_name:
            raise ValueError("stack name must not be empty")
        return new_change_set_name(stack_name)

    async def apply_change(
        self,
        template: str,
        stack_name: str,
        change_set_name: str,
        context: CredentialContext,
        execution_role_arn: str = "",
        tags: dict[str, str] | None = None,
        mode: ChangeMode = ChangeMode.CREATE_OR_UPDATE,
    ) -> None:
        if not stack_name:
            raise ValueError("stack name must not be empty")
        if not change_set_name:
            raise ValueError(f"change set name for stack {stack_name} must not be empty")

        request = StackChangeRequest(
            stack_name=stack_name,
            change_set_name=change_set_name,
            template=template,
            context=context,
            execution_role_arn=execution_role_arn,
            tags=tags or {},
            mode=mode,
        )
        logger.info(
            "stack_change_submitting",
            stack_name=stack_name,
            change_set_name=change_set_name,
            mode=mode.value,
            context=context.label,
        )
        try:
            await self._backend.apply_change(request)
        except StackAlreadyExistsError:
            STACK_CHANGES_TOTAL.labels(mode=mode.value, result="already_exists").inc()
            logger.info("stack_already_exists", stack_name=stack_name)
            raise
        except Exception as e:
            STACK_CHANGES_TOTAL.labels(mode=mode.value, result="rejected").inc()
            logger.warning("stack_change_rejected", stack_name=stack_name, error=str(e))
            raise ChangeApplicationError(stack_name, e) from e

        STACK_CHANGES_TOTAL.labels(mode=mode.value, result="accepted").inc()
        logger.info("stack_change_accepted", stack_name=stack_name, change_set_name=change_set_name)


class ChangeApplicationError(Exception):
    """Raised when the backend rejects a change set."""

    def __init__(self, stack_name: str, cause: BaseException) -> None:
        super().__init__(f"apply change to stack {stack_name}: {cause}")
        self.stack_name = stack_name
