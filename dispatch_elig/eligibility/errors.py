class EligibilityError(Exception):
    """Base eligibility engine error."""


class EngineNotInitializedError(EligibilityError):
    """Raised when recompute or query runs before the enablement cache is loaded."""


class PluginRegistrationError(EligibilityError):
    """Raised at startup when a plugin cannot be registered."""


class UnknownPluginError(EligibilityError):
    """Raised when an operation names a plugin that is not registered."""


class ConditionCompileError(EligibilityError):
    """Raised when a plugin fails while contributing its query condition.

    Compilation is fail-closed: one failing plugin aborts the whole query.
    """

    def __init__(self, plugin_id: str, message: str) -> None:
        super().__init__(f"plugin {plugin_id}: {message}")
        self.plugin_id = plugin_id
