"""ide-bridge — asyncio client for a line-oriented JSON analysis backend.

One backend process per project, requests strictly one at a time, and a
reload workflow that streams progress and ends in a diagnostics list.
"""

from ide_bridge.config import Config, Project, find_project
from ide_bridge.workflow import Workflow

__all__ = ["Config", "Project", "Workflow", "find_project"]
