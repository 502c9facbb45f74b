"""Clone the repository state that is being backed up."""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from repo_backup.errors import FetchError
from repo_backup.events import BackupEvent

logger = logging.getLogger(__name__)

CODECOMMIT_SCHEME = 'codecommit::'
CODECOMMIT_HELPER = 'git-remote-codecommit'


class RepositoryFetcher:
    """Clone a branch of a repository with git."""

    def __init__(
        self,
        clone_url_template: str = "codecommit::{region}://{repository}",
        git_executable: str = 'git',
        timeout_seconds: Optional[int] = None,
        pin_commit: bool = False
    ):
        """
        Args:
            clone_url_template: Clone URL with {region} and {repository} placeholders
            git_executable: git binary to run
            timeout_seconds: Abort git commands after this long (None = no limit)
            pin_commit: Check out the event's commit instead of the branch head
        """
        self.clone_url_template = clone_url_template
        self.git_executable = git_executable
        self.timeout_seconds = timeout_seconds
        self.pin_commit = pin_commit

        if clone_url_template.startswith(CODECOMMIT_SCHEME) and not shutil.which(CODECOMMIT_HELPER):
            logger.warning(f"{CODECOMMIT_HELPER} not found on PATH; codecommit:: clones will fail")

    @classmethod
    def from_config(cls, source_config) -> 'RepositoryFetcher':
        return cls(
            clone_url_template=source_config.clone_url_template,
            git_executable=source_config.git_executable,
            timeout_seconds=source_config.timeout_seconds,
            pin_commit=source_config.pin_commit
        )

    def clone_url(self, event: BackupEvent) -> str:
        return self.clone_url_template.format(
            region=event.region,
            repository=event.repository_name
        )

    def fetch(self, event: BackupEvent, destination_root: Path) -> Path:
        """Clone event.reference_name into destination_root/<repository name>.

        Returns:
            Path to the working tree

        Raises:
            FetchError: if git fails, times out or is not installed
        """
        destination = Path(destination_root) / event.repository_name
        url = self.clone_url(event)

        logger.info(f"Cloning {url} (branch {event.reference_name})")
        self._git(['clone', '-b', event.reference_name, url, str(destination)])

        head = self._git(['rev-parse', 'HEAD'], cwd=destination).strip()
        if head != event.commit_id:
            if self.pin_commit:
                logger.info(f"Checking out {event.commit_id} (branch head is {head})")
                self._git(['checkout', '--quiet', event.commit_id], cwd=destination)
            else:
                logger.warning(
                    f"Branch {event.reference_name} is at {head}, not {event.commit_id}; "
                    f"backing up the branch head"
                )

        logger.info(f"✓ Cloned {event.repository_name} into {destination}")
        return destination

    def _git(self, args: List[str], cwd: Optional[Path] = None) -> str:
        cmd = [self.git_executable] + args
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout_seconds
            )
        except FileNotFoundError as e:
            raise FetchError(f"git executable not found: {self.git_executable}") from e
        except subprocess.TimeoutExpired as e:
            raise FetchError(f"git {args[0]} timed out after {self.timeout_seconds}s") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or '').strip()
            raise FetchError(f"git {args[0]} failed (exit {e.returncode}): {stderr}") from e
        return result.stdout
