"""
NameCard Backend - Company lookup helpers
==========================================

Find-or-create for Company rows, shared by the scan pipeline (link by name,
no external calls) and the enrichment service (domain first, then name).
"""

import logging
import re
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ValidationError
from app.models.company import Company

logger = logging.getLogger(__name__)


def domain_from_url(value: Optional[str]) -> Optional[str]:
    """'https://www.Example.com/about' → 'example.com'"""
    if not value or not value.strip():
        return None
    value = value.strip()
    if "://" not in value:
        value = f"http://{value}"
    host = (urlparse(value).hostname or "").lower()
    host = re.sub(r"^www\.", "", host)
    return host or None


def name_from_domain(domain: str) -> str:
    """'acme-labs.co.uk' → 'Acme Labs'"""
    label = domain.split(".")[0]
    words = re.split(r"[-_]+", label)
    return " ".join(w.capitalize() for w in words if w) or domain


async def find_company(
    db: AsyncSession, name: Optional[str] = None, domain: Optional[str] = None
) -> Optional[Company]:
    if domain:
        result = await db.execute(select(Company).where(Company.domain == domain))
        company = result.scalar_one_or_none()
        if company is not None:
            return company
    if name:
        result = await db.execute(
            select(Company).where(func.lower(Company.name) == name.strip().lower())
        )
        return result.scalars().first()
    return None


async def find_or_create_company(
    db: AsyncSession,
    name: Optional[str] = None,
    domain: Optional[str] = None,
    website: Optional[str] = None,
) -> Company:
    """
    Lookup by domain, then case-insensitive name; otherwise create.

    Raises:
        ValidationError: neither a name nor a domain could be determined
    """
    domain = domain or domain_from_url(website)
    name = name.strip() if name else None
    company = await find_company(db, name=name, domain=domain)
    if company is not None:
        if domain and not company.domain:
            company.domain = domain
        return company

    if not name and not domain:
        raise ValidationError(message="A company name or domain is required", field="companyName")

    company = Company(
        name=name or name_from_domain(domain),
        domain=domain,
        website=website or (f"https://{domain}" if domain else None),
        technologies=[],
        keywords=[],
    )
    db.add(company)
    await db.flush()
    logger.info("Company %s created (%s)", company.id, company.name)
    return company
