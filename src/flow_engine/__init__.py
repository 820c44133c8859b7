"""
Flow Engine - Automation flow validation and execution for social-platform
messaging.

Packages:
- node_sdk/: executor contract (BaseNode, ExecutionContext, items)
- node_registry/: subtype -> executor table
- nodes/: built-in executors
- workflow_runtime/: flow model, validator, runner, legacy bridge
- services/: collaborator capabilities (messaging, content, AI, stores)
- engine: validate-then-run entry point
"""

__version__ = "0.1.0"
