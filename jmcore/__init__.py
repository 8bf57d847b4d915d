# -*- coding: utf-8 -*-

from __future__ import annotations

from .api_errors import ApiError
from .ark import ArkClient
from .collab_hub import CollabHub
from .task_queue import AITask, AITaskQueue, TaskQueueConfig
from .upstream import UpstreamClient, UpstreamConfig

__all__ = [
    "AITask",
    "AITaskQueue",
    "ApiError",
    "ArkClient",
    "CollabHub",
    "TaskQueueConfig",
    "UpstreamClient",
    "UpstreamConfig",
]
