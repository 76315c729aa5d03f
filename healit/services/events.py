"""
변경 이벤트 채널
엔진은 상태 변경을 발행만 하고, 대시보드 등 외부 구독자가 소비한다.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Subscriber = Callable[[Dict[str, Any]], None]

class ChangeFeed:
    """커밋 이후 변경 이벤트를 구독자에게 전달"""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """구독 등록, 해제 함수 반환"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(
        self,
        table: str,
        event: str,
        record_id: int,
        organization_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        message = {
            "table": table,
            "event": event,
            "record_id": record_id,
            "organization_id": organization_id,
            "patient_id": patient_id,
            "data": data or {},
            "published_at": datetime.utcnow().isoformat()
        }

        for callback in list(self._subscribers):
            try:
                callback(message)
            except Exception:
                # 구독자 오류가 엔진 처리를 막으면 안 됨
                logger.exception(f"변경 이벤트 구독자 처리 실패: {table}.{event} id={record_id}")

        return message

    def clear(self):
        self._subscribers.clear()

# 싱글톤 인스턴스 생성
change_feed = ChangeFeed()
