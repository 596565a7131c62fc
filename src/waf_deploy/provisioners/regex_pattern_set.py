"""WAF Classic regex pattern set provisioner."""

from typing import Optional, List

from .base import BaseProvisioner, Resource
from waf_deploy.utils.logging import get_logger

logger = get_logger(__name__)

RESOURCE_TYPE = 'AWS::WAF::RegexPatternSet'


def diff_patterns(old: List[str], new: List[str]) -> List[dict]:
    """Build the UpdateRegexPatternSet updates turning old into new.

    Deletes come first so a set at its pattern limit can be rewritten.
    """
    updates = []
    for pattern in old:
        if pattern not in new:
            updates.append({'Action': 'DELETE', 'RegexPatternString': pattern})
    for pattern in new:
        if pattern not in old:
            updates.append({'Action': 'INSERT', 'RegexPatternString': pattern})
    return updates


class RegexPatternSetProvisioner(BaseProvisioner):
    """Provisioner for WAF Classic regex pattern sets."""

    resource_type = RESOURCE_TYPE

    def compute_updates(self, current: Resource, desired: Resource) -> list:
        return diff_patterns(
            current.properties.get('RegexPatternStrings', []),
            desired.properties.get('RegexPatternStrings', [])
        )

    def create(self, resource: Resource) -> Resource:
        """Create a regex pattern set and insert its patterns.

        Args:
            resource: Resource definition

        Returns:
            Resource with physical_id set
        """
        name = resource.properties['Name']

        response = self.run_with_token(
            lambda token: self.client.create_regex_pattern_set(Name=name, ChangeToken=token),
            operation_name='CreateRegexPatternSet',
            resource_id=name
        )
        resource.physical_id = response['RegexPatternSet']['RegexPatternSetId']
        logger.info(f"Created regex pattern set {name} ({resource.physical_id})")

        updates = diff_patterns([], resource.properties.get('RegexPatternStrings', []))
        self._apply_updates(resource.physical_id, updates)

        return resource

    def update(self, current: Resource, desired: Resource) -> Resource:
        desired.physical_id = current.physical_id
        self._apply_updates(desired.physical_id, self.compute_updates(current, desired))
        return desired

    def destroy(self, resource: Resource) -> None:
        """Remove all patterns, then delete the set.

        Args:
            resource: Regex pattern set to destroy
        """
        set_id = resource.physical_id
        if not set_id:
            return

        current = self.get_current_state(set_id)
        if current is None:
            logger.info(f"Regex pattern set {set_id} already deleted")
            return

        # WAF refuses to delete a set that still has patterns
        self._apply_updates(set_id, diff_patterns(current.properties['RegexPatternStrings'], []))

        self.run_with_token(
            lambda token: self.client.delete_regex_pattern_set(
                RegexPatternSetId=set_id, ChangeToken=token),
            operation_name='DeleteRegexPatternSet',
            resource_id=set_id
        )
        logger.info(f"Deleted regex pattern set {set_id}")

    def get_current_state(self, physical_id: str) -> Optional[Resource]:
        """Fetch current regex pattern set state from WAF.

        Args:
            physical_id: RegexPatternSetId

        Returns:
            Current resource state or None if doesn't exist
        """
        response = self.read(
            self.client.get_regex_pattern_set,
            'GetRegexPatternSet',
            RegexPatternSetId=physical_id
        )
        if response is None:
            return None

        pattern_set = response['RegexPatternSet']
        return Resource(
            id=pattern_set.get('Name', physical_id),
            type=RESOURCE_TYPE,
            physical_id=pattern_set['RegexPatternSetId'],
            properties={
                'Name': pattern_set.get('Name'),
                'RegexPatternStrings': list(pattern_set.get('RegexPatternStrings', [])),
            }
        )

    def find_by_name(self, name: str) -> Optional[str]:
        for summary in self.list_all(self.client.list_regex_pattern_sets,
                                     'RegexPatternSets', 'ListRegexPatternSets'):
            if summary['Name'] == name:
                return summary['RegexPatternSetId']
        return None

    def _apply_updates(self, set_id: str, updates: List[dict]) -> None:
        if not updates:
            return

        self.run_with_token(
            lambda token: self.client.update_regex_pattern_set(
                RegexPatternSetId=set_id,
                Updates=updates,
                ChangeToken=token
            ),
            operation_name='UpdateRegexPatternSet',
            resource_id=set_id
        )
        logger.debug(f"Applied {len(updates)} pattern updates to {set_id}")
