"""Install or remove the system prerequisites with the Pulumi Automation API."""
from __future__ import annotations

import logging
from typing import Any, Dict

import pulumi
from pulumi import automation as auto

from ..config import AppConfig
from .system_rbac import build_system_resources

LOGGER = logging.getLogger(__name__)


class SystemBootstrapper:
    """Manage the Pulumi stack holding the cluster-scoped objects."""

    def __init__(self, settings: AppConfig) -> None:
        self._settings = settings

    @property
    def stack_name(self) -> str:
        pulumi_config = self._settings.pulumi
        if pulumi_config.organization:
            return f"{pulumi_config.organization}/{pulumi_config.project_name}/{pulumi_config.stack_name}"
        return pulumi_config.stack_name

    def _program(self) -> None:
        resources = build_system_resources(self._settings)
        pulumi.export("authorizationList", resources.authorization_list.metadata["name"])
        pulumi.export("systemNamespace", resources.namespace.metadata["name"])

    def _create_or_select_stack(self) -> auto.Stack:
        stack = auto.create_or_select_stack(
            stack_name=self.stack_name,
            project_name=self._settings.pulumi.project_name,
            program=self._program,
        )
        stack.workspace.install_plugin("kubernetes", self._settings.pulumi.kubernetes_plugin_version)
        return stack

    def up(self) -> Dict[str, Any]:
        LOGGER.info("Applying system stack", extra={"stack": self.stack_name})
        stack = self._create_or_select_stack()
        stack.refresh(on_output=lambda line: LOGGER.debug(line))
        result = stack.up(on_output=lambda line: LOGGER.info(line))
        outputs = {key: value.value for key, value in (result.outputs or {}).items()}
        LOGGER.info("System stack applied", extra={"stack": self.stack_name, "outputs": outputs})
        return outputs

    def destroy(self) -> None:
        LOGGER.info("Destroying system stack", extra={"stack": self.stack_name})
        try:
            stack = auto.select_stack(
                stack_name=self.stack_name,
                project_name=self._settings.pulumi.project_name,
                program=self._program,
            )
        except auto.StackNotFoundError:
            LOGGER.info("Stack not found; nothing to destroy", extra={"stack": self.stack_name})
            return
        stack.destroy(on_output=lambda line: LOGGER.info(line))
        stack.workspace.remove_stack(self.stack_name)


__all__ = ["SystemBootstrapper"]
