"""Links between utilization entries and registered physical assets."""
import logging
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from appealdesk.db import now_utc
from appealdesk.workflow.actors import require
from appealdesk.workflow.errors import AppealNotFound, ValidationError
from appealdesk.workflow.models import Appeal, AssetLink, Utilization

log = logging.getLogger(__name__)

OWNERS = ("itc", "mission")


def link_asset(
    session: Session,
    utilization_id: int,
    actor_id: int,
    asset_registration_number: str,
    asset_name: str,
    asset_owner: str,
    notes: Optional[str] = None,
) -> AssetLink:
    """Attach an asset to a utilization entry; the link inherits its appeal."""
    actor = require(session, actor_id, "assets:link")
    utilization = session.get(Utilization, utilization_id)
    if utilization is None:
        raise AppealNotFound(utilization_id, kind="utilization")

    errors: Dict[str, str] = {}
    reg_no = (asset_registration_number or "").strip()
    if not reg_no:
        errors["asset_registration_number"] = "is required"
    if not (asset_name or "").strip():
        errors["asset_name"] = "is required"
    owner = (asset_owner or "").strip().lower()
    if owner not in OWNERS:
        errors["asset_owner"] = f"must be one of {', '.join(OWNERS)}"
    if reg_no and session.query(AssetLink).filter_by(
            utilization_id=utilization.id, asset_registration_number=reg_no).first():
        errors["asset_registration_number"] = "is already linked to this utilization"
    if errors:
        raise ValidationError(errors)

    link = AssetLink(
        utilization_id=utilization.id,
        appeal_id=utilization.appeal_id,
        asset_registration_number=reg_no,
        asset_name=asset_name.strip(),
        asset_owner=owner,
        notes=(notes or "").strip() or None,
        linked_by=actor.id,
        linked_at=now_utc(),
    )
    session.add(link)
    session.commit()
    log.info("asset %s linked to utilization %s (appeal %s)", reg_no, utilization.id, utilization.appeal_id)
    return link


def get_asset_link(session: Session, link_id: int) -> AssetLink:
    link = session.get(AssetLink, link_id)
    if link is None:
        raise AppealNotFound(link_id, kind="asset link")
    return link


def unlink_asset(session: Session, link_id: int, actor_id: int) -> None:
    require(session, actor_id, "assets:link")
    link = get_asset_link(session, link_id)
    session.delete(link)
    session.commit()
    log.info("asset link %s removed", link_id)


def list_asset_links(session: Session, search: Optional[str] = None, appeal_id: Optional[int] = None,
                     page: int = 1, limit: int = 10) -> List[AssetLink]:
    query = session.query(AssetLink).join(Appeal, Appeal.id == AssetLink.appeal_id)
    if appeal_id is not None:
        query = query.filter(AssetLink.appeal_id == appeal_id)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(
            AssetLink.asset_registration_number.ilike(term),
            AssetLink.asset_name.ilike(term),
            Appeal.title.ilike(term),
        ))
    page = max(int(page), 1)
    return (
        query.order_by(AssetLink.linked_at.desc(), AssetLink.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )


def asset_stats(session: Session) -> Dict[str, int]:
    by_owner = dict(
        session.query(AssetLink.asset_owner, func.count(AssetLink.id))
        .group_by(AssetLink.asset_owner)
        .all()
    )
    linked = session.query(func.count(func.distinct(AssetLink.utilization_id))).scalar() or 0
    return {
        "total": sum(by_owner.values()),
        "itc": by_owner.get("itc", 0),
        "mission": by_owner.get("mission", 0),
        "linked_utilizations": linked,
    }
