"""Trigger events for repository backups.

A CodeCommit "Repository State Change" event is turned into a BackupEvent,
either directly from the raw EventBridge JSON or from the environment
variables the trigger rule hands to the build job.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from repo_backup.errors import EventError

logger = logging.getLogger(__name__)

EVENT_SOURCE = 'aws.codecommit'
EVENT_DETAIL_TYPE = 'CodeCommit Repository State Change'
QUALIFYING_EVENTS = ('referenceCreated', 'referenceUpdated')
BRANCH_REFERENCE = 'branch'

# Job environment inputs, in the order the trigger rule emits them
ENV_REFERENCE_NAME = 'REFERENCE_NAME'
ENV_REFERENCE_TYPE = 'REFERENCE_TYPE'
ENV_REPOSITORY_NAME = 'REPOSITORY_NAME'
ENV_COMMIT_ID = 'COMMIT_ID'
ENV_REPO_REGION = 'REPO_REGION'
ENV_ACCOUNT_ID = 'ACCOUNT_ID'


@dataclass(frozen=True)
class BackupEvent:
    """A branch update that should be backed up."""
    repository_name: str
    reference_name: str
    commit_id: str
    region: str
    reference_type: str = BRANCH_REFERENCE
    account_id: Optional[str] = None

    @classmethod
    def from_eventbridge(cls, event: Mapping) -> 'BackupEvent':
        """Build from a raw EventBridge event.

        Raises:
            EventError: if a required field is missing
        """
        if not isinstance(event, Mapping):
            raise EventError(f"Event must be a JSON object, not {type(event).__name__}")
        detail = event.get('detail')
        if not isinstance(detail, Mapping):
            raise EventError("Event has no 'detail' object")

        values = {
            'repository_name': detail.get('repositoryName'),
            'reference_name': detail.get('referenceName'),
            'commit_id': detail.get('commitId'),
            'region': event.get('region'),
        }
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise EventError(f"Event is missing required field(s): {', '.join(missing)}")

        return cls(
            reference_type=detail.get('referenceType') or BRANCH_REFERENCE,
            account_id=event.get('account'),
            **values
        )

    @classmethod
    def from_environment(cls, env: Optional[Mapping[str, str]] = None) -> 'BackupEvent':
        """Build from the job environment inputs.

        Args:
            env: Environment mapping (default: os.environ)

        Raises:
            EventError: if a required variable is missing or empty
        """
        if env is None:
            env = os.environ

        required = {
            'repository_name': ENV_REPOSITORY_NAME,
            'reference_name': ENV_REFERENCE_NAME,
            'commit_id': ENV_COMMIT_ID,
            'region': ENV_REPO_REGION,
        }
        values = {attr: env.get(var, '').strip() for attr, var in required.items()}
        missing = [required[attr] for attr, value in values.items() if not value]
        if missing:
            raise EventError(f"Missing job environment variable(s): {', '.join(missing)}")

        return cls(
            reference_type=env.get(ENV_REFERENCE_TYPE, '').strip() or BRANCH_REFERENCE,
            account_id=env.get(ENV_ACCOUNT_ID, '').strip() or None,
            **values
        )

    def environment_overrides(self) -> Dict[str, List[Dict[str, str]]]:
        """Environment overrides passed to the build job for this event."""
        pairs = [
            (ENV_REFERENCE_NAME, self.reference_name),
            (ENV_REFERENCE_TYPE, self.reference_type),
            (ENV_REPOSITORY_NAME, self.repository_name),
            (ENV_COMMIT_ID, self.commit_id),
            (ENV_REPO_REGION, self.region),
            (ENV_ACCOUNT_ID, self.account_id or ''),
        ]
        return {
            'environmentVariablesOverride': [
                {'name': name, 'value': value} for name, value in pairs
            ]
        }

    def describe(self) -> str:
        return f"{self.repository_name}@{self.reference_name} ({self.commit_id})"


@dataclass
class TriggerRule:
    """Which repository state changes start a backup.

    An empty branch list monitors every branch.
    """
    branches: List[str] = field(default_factory=list)
    event_bus_name: str = 'default'

    def matches(self, event: Mapping) -> bool:
        """Return True if a raw EventBridge event should trigger a backup."""
        if not isinstance(event, Mapping):
            return False
        if event.get('source') != EVENT_SOURCE:
            return False
        if event.get('detail-type') != EVENT_DETAIL_TYPE:
            return False

        detail = event.get('detail')
        if not isinstance(detail, Mapping):
            return False
        if detail.get('event') not in QUALIFYING_EVENTS:
            logger.debug(f"Ignoring event type: {detail.get('event')}")
            return False
        if detail.get('referenceType') != BRANCH_REFERENCE:
            logger.debug(f"Ignoring reference type: {detail.get('referenceType')}")
            return False
        if self.branches and detail.get('referenceName') not in self.branches:
            logger.debug(f"Branch not monitored: {detail.get('referenceName')}")
            return False
        return True

    def event_pattern(self) -> dict:
        """EventBridge pattern equivalent to matches()."""
        detail = {
            'event': list(QUALIFYING_EVENTS),
            'referenceType': [BRANCH_REFERENCE],
        }
        if self.branches:
            detail['referenceName'] = list(self.branches)

        return {
            'source': [EVENT_SOURCE],
            'detail-type': [EVENT_DETAIL_TYPE],
            'detail': detail,
        }
