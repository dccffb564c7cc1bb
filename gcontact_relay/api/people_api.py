"""
Google People API wrapper used as one party's contact directory.

Provides a high-level interface to the Google People API for:
- Listing every contact, or only the members of a contact group (label)
- Creating and updating contacts from ContactRecords
- Finding or creating the sync label and adding contacts to it
- Exponential backoff retry logic for rate limits on reads

Writes (create/update) are attempted once. A failed write raises
DirectoryWriteError and is left to the caller to count.
"""

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from gcontact_relay.sync.matcher import LocalIndex, build_index
from gcontact_relay.sync.record import ALL_FIELDS, ContactRecord

# Fields requested on top of the synced field groups
EXTRA_PERSON_FIELDS = ("metadata", "memberships")

# Maximum number of contacts per page when listing
DEFAULT_PAGE_SIZE = 100

# Retry configuration defaults
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 60.0  # seconds

logger = logging.getLogger(__name__)


class PeopleAPIError(Exception):
    """Raised when a People API operation fails."""

    pass


class RateLimitError(PeopleAPIError):
    """Raised when rate limit is exceeded and retries are exhausted."""

    pass


class DirectoryWriteError(PeopleAPIError):
    """Raised when creating or updating a contact fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def person_fields(sync_fields: Iterable[str]) -> str:
    """Build the personFields mask for the synced field groups."""
    return ",".join(list(sync_fields) + list(EXTRA_PERSON_FIELDS))


def _status_of(error: HttpError) -> int:
    return int(getattr(error.resp, "status", 0) or 0)


class PeopleAPI:
    """
    Google People API wrapper implementing the directory operations.

    Attributes:
        credentials: Google OAuth2 credentials
        sync_fields: Field groups read and written
        service: Google API service object

    Usage:
        api = PeopleAPI(credentials, sync_fields=config.sync_fields)

        # Records published by this party
        records = api.list_by_label("Synced Contacts")

        # Index over every contact, for matching incoming records
        index = api.list_all_indexed()

        # Create and label a contact
        resource_name = api.create(record)
        api.add_to_label(resource_name, "Synced Contacts")

        # Update with a fresh concurrency token
        etag = api.refresh_token(resource_name)
        api.update(resource_name, etag, merged)
    """

    def __init__(
        self,
        credentials: Credentials,
        sync_fields: Iterable[str] = ALL_FIELDS,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
    ):
        """
        Initialize the People API wrapper.

        Args:
            credentials: Valid Google OAuth2 credentials with contacts scope
            sync_fields: People API field groups to read and write
            page_size: Number of contacts per page when listing (default 100)
            max_retries: Maximum retry attempts for failed reads (default 5)
            initial_retry_delay: Initial backoff delay in seconds (default 1.0)
            max_retry_delay: Maximum backoff delay in seconds (default 60.0)
        """
        self.credentials = credentials
        self.sync_fields = tuple(sync_fields)
        self.page_size = min(page_size, 1000)  # API max is 1000
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self._service = None
        # Label name -> contact group resource name
        self._group_cache: dict[str, str] = {}

    @property
    def service(self) -> Any:
        """
        Get or create the Google API service object.

        Returns:
            Google People API service resource

        Raises:
            PeopleAPIError: If service cannot be created
        """
        if self._service is None:
            try:
                self._service = build(
                    "people", "v1", credentials=self.credentials, cache_discovery=False
                )
                logger.debug("Created People API service")
            except Exception as e:
                logger.error(f"Failed to create People API service: {e}")
                raise PeopleAPIError(f"Failed to create API service: {e}") from e
        return self._service

    @property
    def person_fields(self) -> str:
        """personFields mask used for reads."""
        return person_fields(self.sync_fields)

    def _retry_with_backoff(
        self, operation: Callable[[], Any], operation_name: str
    ) -> Any:
        """
        Execute an operation with exponential backoff retry.

        Args:
            operation: Callable to execute
            operation_name: Name for logging purposes

        Returns:
            Result of the operation

        Raises:
            RateLimitError: If retries are exhausted due to rate limits
            PeopleAPIError: For other API errors
        """
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            try:
                return operation()

            except HttpError as e:
                status_code = _status_of(e)

                # Rate limit or quota exceeded - retry with backoff
                if status_code in (429, 403):
                    if attempt < self.max_retries - 1:
                        logger.warning(
                            f"{operation_name} rate limited, retrying in "
                            f"{delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                        )
                        time.sleep(delay)
                        delay = min(delay * 2, self.max_retry_delay)
                        continue
                    else:
                        raise RateLimitError(
                            f"Rate limit exceeded for {operation_name} "
                            f"after {self.max_retries} retries"
                        ) from e

                # Server error - retry with backoff
                if status_code >= 500 and attempt < self.max_retries - 1:
                    logger.warning(
                        f"{operation_name} server error ({status_code}), "
                        f"retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue

                # Other errors - don't retry
                logger.error(f"{operation_name} failed with status {status_code}: {e}")
                raise PeopleAPIError(f"{operation_name} failed: {e}") from e

        # Should not reach here, but just in case
        raise PeopleAPIError(f"{operation_name} failed after all retries")

    def _execute_once(self, operation: Callable[[], Any], operation_name: str) -> Any:
        """
        Execute a write operation exactly once.

        Raises:
            DirectoryWriteError: If the API rejects the write
        """
        try:
            return operation()
        except HttpError as e:
            status_code = _status_of(e)
            logger.error(f"{operation_name} failed with status {status_code}: {e}")
            raise DirectoryWriteError(
                f"{operation_name} failed: {e}", status_code=status_code
            ) from e

    # =========================================================================
    # Reads
    # =========================================================================

    def _list_people(self) -> list[dict[str, Any]]:
        """List every connection of the authenticated user as raw persons."""
        people: list[dict[str, Any]] = []
        page_token: str | None = None

        while True:
            params: dict[str, Any] = {
                "resourceName": "people/me",
                "personFields": self.person_fields,
                "pageSize": self.page_size,
            }
            if page_token:
                params["pageToken"] = page_token

            def execute_list(p: dict[str, Any] = params) -> Any:
                return self.service.people().connections().list(**p).execute()

            response = self._retry_with_backoff(execute_list, "list_contacts")
            people.extend(response.get("connections", []))

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return people

    def _to_records(self, people: Iterable[dict[str, Any]]) -> list[ContactRecord]:
        records: list[ContactRecord] = []
        for person in people:
            try:
                records.append(ContactRecord.from_api_response(person, self.sync_fields))
            except Exception as e:
                logger.warning(f"Failed to parse contact: {e}")
        return records

    def list_contacts(self) -> list[ContactRecord]:
        """
        List every contact of the authenticated user.

        Returns:
            List of ContactRecord

        Raises:
            PeopleAPIError: If listing fails
            RateLimitError: If rate limit exceeded
        """
        records = self._to_records(self._list_people())
        logger.info(f"Listed {len(records)} contacts")
        return records

    def list_by_label(self, label: str) -> list[ContactRecord]:
        """
        List the contacts that are members of a label.

        Args:
            label: Contact group name

        Returns:
            List of ContactRecord (empty if the label does not exist yet)
        """
        group = self.find_group(label)
        if group is None:
            logger.info(f"Label '{label}' does not exist yet; nothing to list")
            return []

        members = [
            person
            for person in self._list_people()
            if _is_member(person, group)
        ]
        records = self._to_records(members)
        logger.info(f"Listed {len(records)} contacts labelled '{label}'")
        return records

    def list_all_indexed(self) -> LocalIndex:
        """Build the lookup index over every contact of the directory."""
        return build_index(self.list_contacts())

    def refresh_token(self, resource_name: str) -> str | None:
        """
        Fetch the current concurrency token (etag) of a contact.

        Args:
            resource_name: Contact's resource name (e.g., "people/c12345")

        Returns:
            Current etag, or None if the API did not return one
        """

        def execute_get() -> Any:
            return (
                self.service.people()
                .get(resourceName=resource_name, personFields="metadata")
                .execute()
            )

        response = self._retry_with_backoff(
            execute_get, f"refresh_token({resource_name})"
        )
        return response.get("etag")

    # =========================================================================
    # Writes
    # =========================================================================

    def create(self, record: ContactRecord) -> str:
        """
        Create a new contact from a record.

        Args:
            record: Record to create (resource_name and etag are ignored)

        Returns:
            Resource name of the created contact

        Raises:
            DirectoryWriteError: If creation fails
        """
        body = record.to_payload(self.sync_fields)
        logger.debug(f"Creating contact: {record.primary_display_name()}")

        def execute_create() -> Any:
            return (
                self.service.people()
                .createContact(body=body, personFields="metadata")
                .execute()
            )

        response = self._execute_once(execute_create, "create_contact")
        resource_name = response.get("resourceName")
        if not resource_name:
            raise DirectoryWriteError("create_contact returned no resourceName")

        logger.info(f"Created contact: {resource_name}")
        return str(resource_name)

    def update(
        self, resource_name: str, etag: str | None, record: ContactRecord
    ) -> dict[str, Any]:
        """
        Overwrite the synced field groups of a contact.

        Args:
            resource_name: Contact to update
            etag: Concurrency token obtained from refresh_token
            record: Full new contents of the synced field groups

        Returns:
            The updated person as returned by the API

        Raises:
            DirectoryWriteError: If the update fails (including a stale etag)
        """
        body = record.to_payload(self.sync_fields)
        if etag:
            body["etag"] = etag
        logger.debug(f"Updating contact: {resource_name}")

        def execute_update() -> Any:
            return (
                self.service.people()
                .updateContact(
                    resourceName=resource_name,
                    body=body,
                    updatePersonFields=",".join(self.sync_fields),
                    personFields="metadata",
                )
                .execute()
            )

        response = self._execute_once(execute_update, f"update_contact({resource_name})")
        logger.info(f"Updated contact: {resource_name}")
        return dict(response)

    # =========================================================================
    # Labels (contact groups)
    # =========================================================================

    def list_contact_groups(self) -> list[dict[str, Any]]:
        """
        List all contact groups for the authenticated user.

        Returns:
            List of contact group dicts

        Raises:
            PeopleAPIError: If listing fails
            RateLimitError: If rate limit exceeded
        """
        groups: list[dict[str, Any]] = []
        page_token: str | None = None

        while True:
            params: dict[str, Any] = {
                "pageSize": self.page_size,
                "groupFields": "name,groupType,metadata",
            }
            if page_token:
                params["pageToken"] = page_token

            def execute_list(p: dict[str, Any] = params) -> Any:
                return self.service.contactGroups().list(**p).execute()

            response = self._retry_with_backoff(execute_list, "list_contact_groups")
            groups.extend(response.get("contactGroups", []))

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Listed {len(groups)} contact groups")
        return groups

    def find_group(self, label: str) -> str | None:
        """
        Find the resource name of the user contact group with a given name.

        Returns:
            Group resource name, or None if no such group exists
        """
        if label in self._group_cache:
            return self._group_cache[label]

        for group in self.list_contact_groups():
            if group.get("groupType", "USER_CONTACT_GROUP") != "USER_CONTACT_GROUP":
                continue
            if group.get("name") == label and group.get("resourceName"):
                self._group_cache[label] = group["resourceName"]
                return self._group_cache[label]
        return None

    def create_contact_group(self, name: str) -> str:
        """
        Create a new contact group.

        Args:
            name: Name for the new contact group

        Returns:
            Resource name of the created group

        Raises:
            PeopleAPIError: If creation fails (e.g., 409 if name already exists)
        """
        logger.debug(f"Creating contact group: {name}")
        body = {"contactGroup": {"name": name}}

        def execute_create() -> Any:
            return self.service.contactGroups().create(body=body).execute()

        response = self._retry_with_backoff(
            execute_create, f"create_contact_group({name})"
        )
        resource_name = response.get("resourceName")
        if not resource_name:
            raise PeopleAPIError(f"create_contact_group({name}) returned no resourceName")

        self._group_cache[name] = resource_name
        logger.info(f"Created contact group '{name}': {resource_name}")
        return str(resource_name)

    def add_to_label(self, resource_name: str, label: str) -> None:
        """
        Add a contact to a label, creating the label if it does not exist.

        Args:
            resource_name: Contact to add
            label: Contact group name

        Raises:
            PeopleAPIError: If the group cannot be found, created or modified
        """
        group = self.find_group(label) or self.create_contact_group(label)
        body = {"resourceNamesToAdd": [resource_name]}

        def execute_modify() -> Any:
            return (
                self.service.contactGroups()
                .members()
                .modify(resourceName=group, body=body)
                .execute()
            )

        response = self._retry_with_backoff(
            execute_modify, f"add_to_label({resource_name}, {label})"
        )
        not_found = response.get("notFoundResourceNames") or []
        if resource_name in not_found:
            raise PeopleAPIError(f"Contact not found when labelling: {resource_name}")
        logger.debug(f"Added {resource_name} to '{label}'")


def _is_member(person: dict[str, Any], group_resource_name: str) -> bool:
    """True if a person's memberships include the given contact group."""
    for membership in person.get("memberships", []):
        group = membership.get("contactGroupMembership") or {}
        if group.get("contactGroupResourceName") == group_resource_name:
            return True
    return False
