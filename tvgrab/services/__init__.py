"""
Services package for the TV listings grabber

This package contains the scan, queue, worker, merge and output stages.
"""
from tvgrab.services.orchestrator import GrabOrchestrator, RunResult, RunState
from tvgrab.services.listing_scanner import ListingScanner
from tvgrab.services.work_queue import WorkQueue
from tvgrab.services.worker_pool import WorkerPool
from tvgrab.services.stream_merger import StreamMerger
from tvgrab.services.xmltv_writer import XmltvWriter

__all__ = [
    'GrabOrchestrator',
    'RunResult',
    'RunState',
    'ListingScanner',
    'WorkQueue',
    'WorkerPool',
    'StreamMerger',
    'XmltvWriter',
]
