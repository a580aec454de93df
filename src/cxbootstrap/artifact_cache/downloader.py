"""
Artifact downloader implementation.

Executes download plans through the ArtifactCache, concurrently for distinct
urls, and records the outcome of each plan.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from cxbootstrap.artifact_cache.cache import ArtifactCache
from cxbootstrap.artifact_cache.planner import ArtifactPlanner, DownloadPlan, DownloadStatus
from cxbootstrap.bootstrap_models import CachedArtifact
from cxbootstrap.cxbootstrap_exceptions import FetchError
from cxbootstrap.cxbootstrap_logger import BootstrapLogger
from cxbootstrap.cxbootstrap_utils import CancellationToken


class ArtifactDownloader:
    """
    Downloads planned artifacts.

    Executes download plans, manages progress, and keeps per-plan results.
    """

    def __init__(
        self,
        planner: ArtifactPlanner,
        cache: ArtifactCache,
        logger: Optional[BootstrapLogger] = None,
        max_workers: int = 4,
    ):
        """
        Initialize the artifact downloader.

        Args:
            planner: The ArtifactPlanner with download plans
            cache: The cache artifacts are fetched through
            logger: Logger for progress and error messages
            max_workers: Upper bound on concurrent fetches
        """
        self.planner = planner
        self.cache = cache
        self.logger = logger or BootstrapLogger()
        self.max_workers = max(1, max_workers)
        self.artifacts: Dict[str, CachedArtifact] = {}

    def download_all_pending(self, cancel: Optional[CancellationToken] = None) -> bool:
        """
        Download all pending artifacts.

        Returns:
            True if all downloads succeeded, False if any failed
        """
        pending = self.planner.get_pending_downloads()

        if not pending:
            self.logger.log("No pending downloads", logging.INFO)
            return True

        self.logger.log(f"Starting download of {len(pending)} artifacts", logging.INFO)

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cxbootstrap-fetch") as pool:
            results = list(pool.map(lambda plan: self.download_artifact(plan, cancel), pending))

        return all(results)

    def download_artifact(self, plan: DownloadPlan, cancel: Optional[CancellationToken] = None) -> bool:
        """
        Download a single artifact.

        Args:
            plan: The download plan to execute

        Returns:
            True if download succeeded, False otherwise
        """
        plan.status = DownloadStatus.IN_PROGRESS
        try:
            artifact = self.cache.fetch(plan.url, plan.destination_path, plan.options, cancel)
        except FetchError as e:
            plan.status = DownloadStatus.FAILED
            plan.error_message = e.message
            plan.error_reason = e.reason
            self.logger.log(f"Failed to download {plan.artifact_key}: {e.message}", logging.ERROR)
            return False

        plan.status = DownloadStatus.COMPLETED
        self.artifacts[plan.artifact_key] = artifact
        self.logger.log(
            f"{plan.artifact_key} available at {artifact.path} ({artifact.status.value}, "
            f"{artifact.bytes_transferred} bytes transferred)",
            logging.INFO,
        )
        return True

    def get_failed_downloads(self) -> List[DownloadPlan]:
        return [p for p in self.planner.download_plans.values() if p.status == DownloadStatus.FAILED]

    def get_download_summary(self) -> dict:
        """
        Get a summary of download results.

        Returns:
            Dictionary with counts of successful, failed, and pending downloads
        """
        plans = list(self.planner.download_plans.values())
        completed = sum(1 for p in plans if p.status == DownloadStatus.COMPLETED)
        failed = sum(1 for p in plans if p.status == DownloadStatus.FAILED)
        pending = sum(1 for p in plans if p.status == DownloadStatus.PENDING)

        return {
            "completed": completed,
            "failed": failed,
            "pending": pending,
            "total": len(plans),
        }
