"""Local JSON store for portal submissions, field mappings and form data"""

import os
import json
import asyncio
from typing import Dict, Any, Optional, List, Callable
from datetime import datetime
from loguru import logger
import yaml

from .models import (
    FormSubmission,
    FormSubmissionStatus,
    FormTemplate,
    PortalFieldMapping,
    PortalSubmission,
    PortalSubmissionStatus,
    PortalType,
    utcnow,
)
from src.errors import ConcurrentUpdateError, DuplicateFieldMappingError

# Fields the store manages itself; callers cannot overwrite them
_PROTECTED_FIELDS = {'id', 'version', 'created_at', 'updated_at', 'form_submission_id', 'portal_type'}


def _empty_data() -> Dict[str, Dict[str, Any]]:
    return {
        'portal_submissions': {},
        'field_mappings': {},
        'form_submissions': {},
        'form_templates': {},
    }


class PortalStore:
    """Persistence for the submission pipeline.

    Every write is a partial-field update applied under one asyncio lock and
    bumps the submission version, so callers can guard a transition with
    `expected_version`. With `store_file=None` the store lives in memory only.
    """

    def __init__(self, store_file: Optional[str] = 'portal_store.json', clock: Callable[[], datetime] = utcnow):
        self.store_file = store_file
        self.clock = clock
        self._lock = asyncio.Lock()
        self._load_local_store()
        if store_file:
            logger.info(f"Using local JSON storage: {store_file}")
        else:
            logger.info("Using in-memory storage")

    def _load_local_store(self):
        self.local_data = _empty_data()
        if not self.store_file:
            return
        if os.path.exists(self.store_file) and os.path.getsize(self.store_file) > 0:
            with open(self.store_file, 'r', encoding='utf-8') as f:
                loaded = json.load(f)
            for section in self.local_data:
                self.local_data[section] = loaded.get(section, {})

    async def _save_local_store(self):
        """Write the store file off the event loop; callers hold the lock"""
        if not self.store_file:
            return
        payload = json.dumps(self.local_data, indent=2, default=str)
        await asyncio.to_thread(self._write_store_file, payload)

    def _write_store_file(self, payload: str):
        directory = os.path.dirname(self.store_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_file = f"{self.store_file}.tmp"
        with open(tmp_file, 'w', encoding='utf-8') as f:
            f.write(payload)
        os.replace(tmp_file, self.store_file)

    # ------------------------------------------------------------------
    # Portal submissions
    # ------------------------------------------------------------------

    async def get_submission(self, submission_id: str) -> Optional[PortalSubmission]:
        record = self.local_data['portal_submissions'].get(submission_id)
        return PortalSubmission.model_validate(record) if record else None

    async def get_submission_by_form_submission_id(self, form_submission_id: str) -> Optional[PortalSubmission]:
        """Latest portal submission created for a form submission"""
        matches = [
            PortalSubmission.model_validate(record)
            for record in self.local_data['portal_submissions'].values()
            if record['form_submission_id'] == form_submission_id
        ]
        if not matches:
            return None
        return max(matches, key=lambda s: s.created_at)

    async def list_submissions(self, status: Optional[PortalSubmissionStatus] = None) -> List[PortalSubmission]:
        submissions = [PortalSubmission.model_validate(r) for r in self.local_data['portal_submissions'].values()]
        if status is not None:
            submissions = [s for s in submissions if s.status == status]
        return sorted(submissions, key=lambda s: s.created_at)

    async def create_submission(
        self,
        form_submission_id: str,
        portal_type: PortalType,
        requested_by: Optional[str] = None,
        submission_id: Optional[str] = None,
    ) -> PortalSubmission:
        now = self.clock()
        fields = dict(
            form_submission_id=form_submission_id,
            portal_type=portal_type,
            requested_by=requested_by,
            created_at=now,
            updated_at=now,
        )
        if submission_id:
            fields['id'] = submission_id
        submission = PortalSubmission(**fields)
        async with self._lock:
            if submission.id in self.local_data['portal_submissions']:
                raise ValueError(f"Portal submission {submission.id} already exists")
            self.local_data['portal_submissions'][submission.id] = submission.model_dump(mode='json')
            await self._save_local_store()
        logger.info(f"Created portal submission {submission.id} ({portal_type.value})")
        return submission

    async def update_submission(
        self,
        submission_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Optional[PortalSubmission]:
        """
        Apply a partial update to a portal submission

        Args:
            submission_id: Submission to update
            fields: Only these fields are written; None values clear a field
            expected_version: When given, the update is refused unless the
                stored version still matches

        Returns:
            Updated submission, or None when the submission does not exist

        Raises:
            ConcurrentUpdateError: stored version differs from expected_version
        """
        illegal = set(fields) & _PROTECTED_FIELDS
        if illegal:
            raise ValueError(f"Cannot update protected fields: {sorted(illegal)}")

        async with self._lock:
            record = self.local_data['portal_submissions'].get(submission_id)
            if record is None:
                return None
            current = PortalSubmission.model_validate(record)
            if expected_version is not None and current.version != expected_version:
                raise ConcurrentUpdateError(submission_id, expected_version, current.version)

            updated = current.model_copy(update={
                **fields,
                'version': current.version + 1,
                'updated_at': self.clock(),
            })
            # Round-trip through validation so enums and datetimes stay typed
            updated = PortalSubmission.model_validate(updated.model_dump())
            self.local_data['portal_submissions'][submission_id] = updated.model_dump(mode='json')
            await self._save_local_store()
        return updated

    # ------------------------------------------------------------------
    # Field mappings
    # ------------------------------------------------------------------

    async def get_field_mappings(self, portal_type: PortalType) -> List[PortalFieldMapping]:
        mappings = [
            PortalFieldMapping.model_validate(record)
            for record in self.local_data['field_mappings'].values()
            if record['portal_type'] == PortalType(portal_type).value
        ]
        return sorted(mappings, key=lambda m: m.created_at)

    async def get_field_mapping(self, mapping_id: str) -> Optional[PortalFieldMapping]:
        record = self.local_data['field_mappings'].get(mapping_id)
        return PortalFieldMapping.model_validate(record) if record else None

    async def create_field_mapping(self, portal_type: PortalType, form_field: str, portal_field: str) -> PortalFieldMapping:
        portal_type = PortalType(portal_type)
        now = self.clock()
        mapping = PortalFieldMapping(
            portal_type=portal_type,
            form_field=form_field,
            portal_field=portal_field,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            for record in self.local_data['field_mappings'].values():
                if record['portal_type'] == portal_type.value and record['form_field'] == form_field:
                    raise DuplicateFieldMappingError(
                        f"Field mapping for {form_field} already exists on {portal_type.value}"
                    )
            self.local_data['field_mappings'][mapping.id] = mapping.model_dump(mode='json')
            await self._save_local_store()
        return mapping

    async def update_field_mapping(self, mapping_id: str, portal_field: str) -> Optional[PortalFieldMapping]:
        async with self._lock:
            record = self.local_data['field_mappings'].get(mapping_id)
            if record is None:
                return None
            mapping = PortalFieldMapping.model_validate(record).model_copy(
                update={'portal_field': portal_field, 'updated_at': self.clock()}
            )
            self.local_data['field_mappings'][mapping_id] = mapping.model_dump(mode='json')
            await self._save_local_store()
        return mapping

    async def delete_field_mapping(self, mapping_id: str) -> bool:
        async with self._lock:
            if mapping_id not in self.local_data['field_mappings']:
                return False
            del self.local_data['field_mappings'][mapping_id]
            await self._save_local_store()
        return True

    async def seed_field_mappings(self, yaml_path: str) -> int:
        """
        Create field mappings listed in a YAML file that do not exist yet

        The file maps portal type names to {form_field: portal_field} tables.

        Returns:
            Number of mappings created
        """
        with open(yaml_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}

        created = 0
        for portal_name, table in config.items():
            portal_type = PortalType(portal_name)
            existing = {m.form_field for m in await self.get_field_mappings(portal_type)}
            for form_field, portal_field in (table or {}).items():
                if form_field in existing:
                    continue
                await self.create_field_mapping(portal_type, form_field, str(portal_field))
                created += 1

        logger.info(f"Seeded {created} field mappings from {yaml_path}")
        return created

    # ------------------------------------------------------------------
    # Form templates and submissions (owned by case management)
    # ------------------------------------------------------------------

    async def get_form_template(self, template_id: str) -> Optional[FormTemplate]:
        record = self.local_data['form_templates'].get(template_id)
        return FormTemplate.model_validate(record) if record else None

    async def save_form_template(self, template: FormTemplate) -> FormTemplate:
        async with self._lock:
            self.local_data['form_templates'][template.id] = template.model_dump(mode='json')
            await self._save_local_store()
        return template

    async def get_form_submission(self, form_submission_id: str) -> Optional[FormSubmission]:
        record = self.local_data['form_submissions'].get(form_submission_id)
        return FormSubmission.model_validate(record) if record else None

    async def save_form_submission(self, form_submission: FormSubmission) -> FormSubmission:
        async with self._lock:
            self.local_data['form_submissions'][form_submission.id] = form_submission.model_dump(mode='json')
            await self._save_local_store()
        return form_submission

    async def update_form_submission_status(
        self,
        form_submission_id: str,
        status: FormSubmissionStatus,
    ) -> Optional[FormSubmission]:
        async with self._lock:
            record = self.local_data['form_submissions'].get(form_submission_id)
            if record is None:
                return None
            form_submission = FormSubmission.model_validate(record).model_copy(
                update={'status': status, 'updated_at': self.clock()}
            )
            self.local_data['form_submissions'][form_submission_id] = form_submission.model_dump(mode='json')
            await self._save_local_store()
        return form_submission
