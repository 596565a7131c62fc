"""WAF Classic regex match set provisioner."""

from typing import Optional, List, Dict, Any, Tuple

from .base import BaseProvisioner, Resource
from waf_deploy.utils.logging import get_logger

logger = get_logger(__name__)

RESOURCE_TYPE = 'AWS::WAF::RegexMatchSet'


def expand_field_to_match(field_to_match: Dict[str, Any]) -> Dict[str, str]:
    """Convert a config ``field_to_match`` dict to the WAF API shape."""
    expanded = {'Type': field_to_match['type']}
    if field_to_match.get('data'):
        expanded['Data'] = field_to_match['data']
    return expanded


def flatten_field_to_match(field_to_match: Dict[str, str]) -> Dict[str, Optional[str]]:
    """Convert a WAF API ``FieldToMatch`` to the config shape."""
    return {
        'type': field_to_match.get('Type'),
        'data': field_to_match.get('Data'),
    }


def tuple_key(match_tuple: Dict[str, Any]) -> Tuple[str, str, str, str]:
    """Identity of a RegexMatchTuple.

    WAF lowercases header names in Data, so Data compares case-insensitively.
    """
    field_to_match = match_tuple.get('FieldToMatch', {})
    return (
        (field_to_match.get('Type') or '').upper(),
        (field_to_match.get('Data') or '').lower(),
        match_tuple.get('RegexPatternSetId', ''),
        match_tuple.get('TextTransformation', ''),
    )


def diff_tuples(old: List[dict], new: List[dict]) -> List[dict]:
    """Build the UpdateRegexMatchSet updates turning old into new."""
    old_keys = {tuple_key(t) for t in old}
    new_keys = {tuple_key(t) for t in new}

    updates = []
    for match_tuple in old:
        if tuple_key(match_tuple) not in new_keys:
            updates.append({'Action': 'DELETE', 'RegexMatchTuple': match_tuple})
    for match_tuple in new:
        key = tuple_key(match_tuple)
        if key not in old_keys:
            updates.append({'Action': 'INSERT', 'RegexMatchTuple': match_tuple})
            # One INSERT per identity; WAF rejects the whole call otherwise
            old_keys.add(key)
    return updates


class RegexMatchSetProvisioner(BaseProvisioner):
    """Provisioner for WAF Classic regex match sets."""

    resource_type = RESOURCE_TYPE

    def compute_updates(self, current: Resource, desired: Resource) -> list:
        return diff_tuples(
            current.properties.get('RegexMatchTuples', []),
            desired.properties.get('RegexMatchTuples', [])
        )

    def create(self, resource: Resource) -> Resource:
        """Create a regex match set and insert its tuples.

        Args:
            resource: Resource definition with API-shaped RegexMatchTuples

        Returns:
            Resource with physical_id set
        """
        name = resource.properties['Name']

        response = self.run_with_token(
            lambda token: self.client.create_regex_match_set(Name=name, ChangeToken=token),
            operation_name='CreateRegexMatchSet',
            resource_id=name
        )
        resource.physical_id = response['RegexMatchSet']['RegexMatchSetId']
        logger.info(f"Created regex match set {name} ({resource.physical_id})")

        updates = diff_tuples([], resource.properties.get('RegexMatchTuples', []))
        self._apply_updates(resource.physical_id, updates)

        return resource

    def update(self, current: Resource, desired: Resource) -> Resource:
        desired.physical_id = current.physical_id
        self._apply_updates(desired.physical_id, self.compute_updates(current, desired))
        return desired

    def destroy(self, resource: Resource) -> None:
        set_id = resource.physical_id
        if not set_id:
            return

        current = self.get_current_state(set_id)
        if current is None:
            logger.info(f"Regex match set {set_id} already deleted")
            return

        self._apply_updates(set_id, diff_tuples(current.properties['RegexMatchTuples'], []))

        self.run_with_token(
            lambda token: self.client.delete_regex_match_set(
                RegexMatchSetId=set_id, ChangeToken=token),
            operation_name='DeleteRegexMatchSet',
            resource_id=set_id
        )
        logger.info(f"Deleted regex match set {set_id}")

    def get_current_state(self, physical_id: str) -> Optional[Resource]:
        response = self.read(
            self.client.get_regex_match_set,
            'GetRegexMatchSet',
            RegexMatchSetId=physical_id
        )
        if response is None:
            return None

        match_set = response['RegexMatchSet']
        return Resource(
            id=match_set.get('Name', physical_id),
            type=RESOURCE_TYPE,
            physical_id=match_set['RegexMatchSetId'],
            properties={
                'Name': match_set.get('Name'),
                'RegexMatchTuples': list(match_set.get('RegexMatchTuples', [])),
            },
            dependencies=sorted({t['RegexPatternSetId']
                                 for t in match_set.get('RegexMatchTuples', [])})
        )

    def find_by_name(self, name: str) -> Optional[str]:
        for summary in self.list_all(self.client.list_regex_match_sets,
                                     'RegexMatchSets', 'ListRegexMatchSets'):
            if summary['Name'] == name:
                return summary['RegexMatchSetId']
        return None

    def _apply_updates(self, set_id: str, updates: List[dict]) -> None:
        if not updates:
            return

        self.run_with_token(
            lambda token: self.client.update_regex_match_set(
                RegexMatchSetId=set_id,
                Updates=updates,
                ChangeToken=token
            ),
            operation_name='UpdateRegexMatchSet',
            resource_id=set_id
        )
        logger.debug(f"Applied {len(updates)} tuple updates to {set_id}")
