from django.urls import path
from rest_framework.routers import DefaultRouter

from inventory.views import (
    AdminStockRecordViewSet,
    ApprovalPolicyView,
    LedgerView,
    StockRecordViewSet,
    TransferRequestViewSet,
)

router = DefaultRouter()
router.register(r"stocks", StockRecordViewSet, basename="stock")
router.register(r"admin/stocks", AdminStockRecordViewSet, basename="admin-stock")
router.register(r"transfer-requests", TransferRequestViewSet, basename="transfer-request")

urlpatterns = router.urls + [
    path("ledger/", LedgerView.as_view(), name="ledger"),
    path("approval-policy/", ApprovalPolicyView.as_view(), name="approval-policy"),
]
