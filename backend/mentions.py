# mentions.py — @mention parsing and member resolution for comments
import re
from typing import Iterable, List

from sqlalchemy.ext.asyncio import AsyncSession

from repositories import MemberRepository

# @"Full Name" or @word
MENTION_RE = re.compile(r'@"([^"]+)"|@(\w+)')


def extract_mention_names(text: str) -> List[str]:
    """Names in order of appearance, duplicates kept."""
    return [quoted or word for quoted, word in MENTION_RE.findall(text or "")]


def match_members(names: Iterable[str], members) -> List[str]:
    """Member ids whose full name equals one of names, case-insensitively.

    Every member sharing a matched name is included; ids are unique and keep
    first-match order.
    """
    by_name = {}
    for member in members:
        by_name.setdefault(member.name.casefold(), []).append(member.id)

    ids: List[str] = []
    seen = set()
    for name in names:
        for member_id in by_name.get(name.casefold(), []):
            if member_id not in seen:
                seen.add(member_id)
                ids.append(member_id)
    return ids


class MentionResolver:
    def __init__(self, db: AsyncSession):
        self.members = MemberRepository(db)

    async def resolve(self, company_id: str, text: str) -> List[str]:
        names = extract_mention_names(text)
        if not names:
            return []
        members = await self.members.find_by_company(company_id)
        return match_members(names, members)
