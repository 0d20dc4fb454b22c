"""Extension layer — plugin system via pluggy.

Discovery: ``crmflow.plugins`` entry points and ``.crmflow/plugins/*.py``.
INVARIANT: Plugin failures are warnings, never errors.
"""

from crmflow.plugins.event_bus import EventBus
from crmflow.plugins.manager import PluginManager

__all__ = ["EventBus", "PluginManager"]
