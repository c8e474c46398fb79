"""
Notification Service - Pass-Cut Platform
passcut/services/notification_service.py

Per-user rescore notifications built from unread RescoreDetail rows.
"""

import logging
from typing import Dict, List, Optional

from passcut.models.rescore import NotificationList, RescoreDetail, RescoreEvent, RescoreNotification
from passcut.repositories.base import ExamDataStore

logger = logging.getLogger(__name__)

NOTIFICATION_LIMIT = 20


def build_impact_text(detail: RescoreDetail) -> str:
    """
    e.g. ``점수 +2.50점, 순위 12위 → 8위`` or, when only a subject moved,
    ``점수 +0.00점, 헌법 과락``. Cutoff transitions are always listed; raw
    subject moves only when the final score did not change.
    """
    parts = [f"점수 {detail.score_delta:+.2f}점"]
    if detail.old_rank is not None and detail.new_rank is not None:
        parts.append(f"순위 {detail.old_rank}위 → {detail.new_rank}위")
    for change in detail.subject_changes:
        if change.old_is_failed != change.new_is_failed:
            parts.append(f"{change.subject_name} 과락" if change.new_is_failed else f"{change.subject_name} 과락 해제")
        elif detail.score_delta == 0:
            parts.append(f"{change.subject_name} {change.old_raw_score:.2f}점 → {change.new_raw_score:.2f}점")
    return ", ".join(parts)


class NotificationService:

    def __init__(self, store: ExamDataStore):
        self.store = store

    def list_notifications(self, user_id: int, limit: int = NOTIFICATION_LIMIT) -> NotificationList:
        details = self.store.list_rescore_details(user_id, limit=limit, unread_only=True)
        events: Dict[int, Optional[RescoreEvent]] = {}
        items: List[RescoreNotification] = []
        for detail in details:
            if detail.rescore_event_id not in events:
                events[detail.rescore_event_id] = self.store.get_rescore_event(detail.rescore_event_id)
            event = events[detail.rescore_event_id]
            if event is None:
                logger.warning(
                    "rescore_event_missing",
                    extra={"detail_id": detail.id, "rescore_event_id": detail.rescore_event_id},
                )
                continue
            items.append(
                RescoreNotification(
                    id=detail.id,
                    rescore_event_id=detail.rescore_event_id,
                    exam_id=event.exam_id,
                    exam_type=event.exam_type,
                    submission_id=detail.submission_id,
                    old_final_score=detail.old_final_score,
                    new_final_score=detail.new_final_score,
                    score_delta=detail.score_delta,
                    old_rank=detail.old_rank,
                    new_rank=detail.new_rank,
                    subject_changes=detail.subject_changes,
                    impact_text=build_impact_text(detail),
                    is_read=detail.is_read,
                    created_at=detail.created_at,
                )
            )
        return NotificationList(
            unread_count=self.store.count_unread_rescore_details(user_id),
            items=items,
        )

    def mark_read(self, user_id: int, detail_ids: Optional[List[int]] = None) -> int:
        """Mark all unread notifications (or only ``detail_ids``) as read."""
        with self.store.unit_of_work():
            updated = self.store.mark_rescore_details_read(user_id, detail_ids)
        logger.info("notifications_marked_read", extra={"user_id": user_id, "updated": updated})
        return updated
