"""
Defines settings for cxbootstrap
"""

import os
import pathlib


class BootstrapSettings:
    """
    Provides the various settings for cxbootstrap
    """

    @staticmethod
    def get_global_cache_directory() -> str:
        """
        Returns the global cache directory used by cxbootstrap
        """
        global_cache_directory = os.environ.get(
            "CXBOOTSTRAP_HOME", str(pathlib.Path.home() / ".cxbootstrap")
        )
        os.makedirs(global_cache_directory, exist_ok=True)
        return global_cache_directory

    @staticmethod
    def get_artifact_cache_directory() -> str:
        """
        Returns the directory where fetched artifacts are kept when no dependency dir is configured
        """
        artifact_directory = str(
            pathlib.PurePath(BootstrapSettings.get_global_cache_directory(), "artifacts")
        )
        os.makedirs(artifact_directory, exist_ok=True)
        return artifact_directory
