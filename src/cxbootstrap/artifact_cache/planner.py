"""
Artifact planning.

Decides which distribution archives have to be fetched for a manifest and
where they are stored, producing one DownloadPlan per artifact.
"""

import pathlib
from typing import Dict, List, Optional

from cxbootstrap.bootstrap_models import FetchOptions, Manifest
from cxbootstrap.cxbootstrap_config import BootstrapConfig

INTEGRATION_PACK = "hybris-commerce-integrations"

SOLR_DOWNLOAD_URL = "https://archive.apache.org/dist/solr/solr/{version}/solr-{version}.tgz"

# Manifest solr versions map to the concrete release that is downloaded.
SOLR_VERSION_MAP = {
    "8.11": "8.11.2",
    "9.2": "9.2.1",
    "9.5": "9.5.0",
}
DEFAULT_SOLR_VERSION = "9.2.1"


class DownloadStatus:
    """Enumeration of download statuses."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class DownloadPlan:
    """
    A plan to fetch a specific artifact.

    Captures all information needed to fetch the artifact into the cache.
    """

    def __init__(
        self,
        artifact_key: str,
        url: str,
        destination_path: str,
        options: FetchOptions,
        status: str = DownloadStatus.PENDING,
    ):
        """
        Initialize a download plan.

        Args:
            artifact_key: Unique key for the artifact (platform, integrations, solr)
            url: URL to download from
            destination_path: Where the artifact is stored
            options: Fetch options, including per-request credentials
            status: Current download status
        """
        self.artifact_key = artifact_key
        self.url = url
        self.destination_path = destination_path
        self.options = options
        self.status = status
        self.error_message: Optional[str] = None
        self.error_reason: Optional[str] = None

    @property
    def is_archive_source(self) -> bool:
        """Whether the artifact is a distribution archive to index and extract."""
        return self.artifact_key != "solr"

    def __repr__(self) -> str:
        return (
            f"DownloadPlan(key={self.artifact_key}, "
            f"status={self.status}, url={self.url})"
        )


def resolve_solr_version(manifest_solr_version: Optional[str]) -> str:
    """
    Map the manifest's solr version to a downloadable release.

    Args:
        manifest_solr_version: e.g. "9.2"; None selects the default

    Returns:
        Release version, e.g. "9.2.1"
    """
    if manifest_solr_version is None:
        return DEFAULT_SOLR_VERSION
    return SOLR_VERSION_MAP.get(manifest_solr_version, DEFAULT_SOLR_VERSION)


class ArtifactPlanner:
    """
    Creates download plans for a manifest.

    Commerce suite and extension pack archives are only planned when the
    artifact repository is fully configured (base url, user and password).
    """

    def __init__(self, manifest: Manifest, config: BootstrapConfig):
        self.manifest = manifest
        self.config = config
        self.download_plans: Dict[str, DownloadPlan] = {}

    def create_download_plan(self) -> List[DownloadPlan]:
        """
        Create download plans based on the manifest and configuration.

        Returns:
            The plans, platform archive first
        """
        self.download_plans = {}
        dependency_dir = self.config.resolve(self.config.dependency_dir)
        repository = self.config.repository

        if repository.configured:
            base_url = repository.base_url.rstrip("/")
            remote_options = FetchOptions(
                overwrite=False,
                only_if_modified=True,
                use_freshness_token=True,
                auth=repository.auth,
                timeout=repository.timeout,
                deadline=repository.deadline,
            )

            version = self.manifest.commerce_suite_version
            platform_name = f"hybris-commerce-suite-{version}.zip"
            self._add(
                DownloadPlan(
                    artifact_key="platform",
                    url=f"{base_url}/commerce/{platform_name}",
                    destination_path=str(dependency_dir / platform_name),
                    options=remote_options,
                )
            )

            pack = self.manifest.extension_pack(INTEGRATION_PACK)
            if pack is not None:
                pack_name = f"{INTEGRATION_PACK}-{pack.version}.zip"
                self._add(
                    DownloadPlan(
                        artifact_key="integrations",
                        url=f"{base_url}/integration/{pack_name}",
                        destination_path=str(dependency_dir / pack_name),
                        options=remote_options,
                    )
                )

        solr_version = resolve_solr_version(self.manifest.solr_version)
        self._add(
            DownloadPlan(
                artifact_key="solr",
                url=SOLR_DOWNLOAD_URL.format(version=solr_version),
                destination_path=str(dependency_dir / f"solr-{solr_version}.tgz"),
                options=FetchOptions(
                    overwrite=False,
                    timeout=repository.timeout,
                    deadline=repository.deadline,
                ),
            )
        )
        return list(self.download_plans.values())

    def _add(self, plan: DownloadPlan) -> None:
        self.download_plans[plan.artifact_key] = plan

    def get_pending_downloads(self) -> List[DownloadPlan]:
        """
        Get all pending downloads.

        Returns:
            List of DownloadPlan objects with PENDING status
        """
        return [p for p in self.download_plans.values() if p.status == DownloadStatus.PENDING]

    def archive_paths(self) -> List[pathlib.Path]:
        """
        Local paths of the distribution archives, platform first.

        Falls back to the archives already present in the dependency directory
        when the repository is not configured.
        """
        planned = [pathlib.Path(p.destination_path) for p in self.download_plans.values() if p.is_archive_source]
        if planned:
            return planned

        dependency_dir = self.config.resolve(self.config.dependency_dir)
        version = self.manifest.commerce_suite_version
        local = [dependency_dir / f"hybris-commerce-suite-{version}.zip"]
        pack = self.manifest.extension_pack(INTEGRATION_PACK)
        if pack is not None:
            local.append(dependency_dir / f"{INTEGRATION_PACK}-{pack.version}.zip")
        return local
