"""Remote hosts - SSH sessions, discovery and service control.

Submodules:
  _secrets    - keyring-backed password storage
  _pool       - RemoteSessionPool / RemoteSession (asyncssh)
  _parsers    - parsers for probe output
  _tags       - ordered capability-tag rules
  _discovery  - DiscoveryPipeline (concurrent probes -> snapshot)
  _services   - pm2 / docker / systemd actions and log tails
"""

from devyard.remote._discovery import DiscoveryPipeline, ProbeTarget, project_scan_command
from devyard.remote._pool import RemoteSession, RemoteSessionPool, sudo_wrap
from devyard.remote._secrets import SecretStore
from devyard.remote._services import ALLOWED_ACTIONS, exec_then_sudo, service_action, service_logs
from devyard.remote._tags import TAG_RULES, derive_tags

__all__ = [
    "ALLOWED_ACTIONS",
    "TAG_RULES",
    "DiscoveryPipeline",
    "ProbeTarget",
    "RemoteSession",
    "RemoteSessionPool",
    "SecretStore",
    "derive_tags",
    "exec_then_sudo",
    "project_scan_command",
    "service_action",
    "service_logs",
    "sudo_wrap",
]
