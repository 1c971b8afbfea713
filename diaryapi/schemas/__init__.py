from .points import (
    PointsResponse,
    PointHistoryResponse,
    PointTransactionEntry,
    DiaryWriteResult,
    AdminAdjustResult,
    SpendPointsResult,
)
