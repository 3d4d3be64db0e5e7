"""
Pipeline components for log collection and publishing.
"""

from logship.storage.pipeline.collectors import WorkflowLogCollector
from logship.storage.pipeline.publishers import LogPublisher

__all__ = [
    'WorkflowLogCollector',
    'LogPublisher',
]
