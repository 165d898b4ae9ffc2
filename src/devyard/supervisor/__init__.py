"""Process supervisor - launches dev processes and watches them until they exit.

This package is split into focused submodules:
  _instance        - ProcessInstance and its lifecycle state machine
  _ports           - ordered bound-port patterns
  _launch          - npm / compose / docker launch planning
  _streams         - context-aware spawning and chunked output reading
  _signals         - context-aware termination and port freeing
  _container_logs  - ``docker logs -f`` followers
  _supervisor      - ProcessSupervisor (registry, start/stop/shutdown)
"""

from devyard.supervisor._container_logs import ContainerLogStreams
from devyard.supervisor._instance import InstanceState, ProcessInstance
from devyard.supervisor._launch import LaunchPlan, pick_script, plan_launch, port_flags
from devyard.supervisor._ports import PORT_PATTERNS, detect_port
from devyard.supervisor._signals import free_port, kill_process_tree, request_termination
from devyard.supervisor._supervisor import ProcessSupervisor

__all__ = [
    "PORT_PATTERNS",
    "ContainerLogStreams",
    "InstanceState",
    "LaunchPlan",
    "ProcessInstance",
    "ProcessSupervisor",
    "detect_port",
    "free_port",
    "kill_process_tree",
    "pick_script",
    "plan_launch",
    "port_flags",
    "request_termination",
]
