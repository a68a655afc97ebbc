from django.conf import settings
from django.db.models import Q
from rest_framework import generics, mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request, get_request_id
from common.exceptions import PolicyViolation
from common.pagination import LedgerResultsSetPagination
from common.permissions import RoleCapabilityPermission, user_has_capability
from core.views import scoped_queryset_for_user
from inventory.approvals import auto_approve, bulk_resolve
from inventory.ledger import query_entries
from inventory.models import StockRecord, TransferRequest
from inventory.policy import load_policy, save_policy
from inventory.serializers import (
    ApprovalPolicySerializer,
    BulkResolveSerializer,
    LedgerEntrySerializer,
    LedgerQuerySerializer,
    StockDetailsSerializer,
    StockIntakeSerializer,
    StockRecordSerializer,
    TransferRejectSerializer,
    TransferRequestCreateSerializer,
    TransferRequestSerializer,
)
from inventory.services import receive_stock, update_stock_details
from inventory.transfers import APPROVE, REJECT, request_transfer, resolve


class StockRecordViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = StockRecord.objects.all()
    serializer_class = StockRecordSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.view", "retrieve": "inventory.view"}

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        location = self.request.query_params.get("location")
        item_code = self.request.query_params.get("item_code")
        if location:
            qs = qs.filter(location=location)
        if item_code:
            qs = qs.filter(item_code=item_code)
        return qs.order_by("location", "item_code")


class AdminStockRecordViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = StockRecord.objects.all()
    serializer_class = StockRecordSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "stock.adjust",
        "retrieve": "stock.adjust",
        "create": "stock.adjust",
        "partial_update": "stock.adjust",
    }

    def get_queryset(self):
        return super().get_queryset().order_by("location", "item_code")

    def create(self, request):
        serializer = StockIntakeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before = StockRecord.objects.filter(
            item_code=serializer.validated_data["item_code"],
            location=serializer.validated_data["location"],
        ).first()
        before_snapshot = StockRecordSerializer(before).data if before else None

        stock, created = receive_stock(actor=request.user, **serializer.validated_data)
        data = StockRecordSerializer(stock).data
        create_audit_log_from_request(
            request,
            action="stock.create" if created else "stock.restock",
            entity="stock",
            entity_id=stock.id,
            before_snapshot=before_snapshot,
            after_snapshot=data,
            location=stock.location,
        )
        return Response(data, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)

    def partial_update(self, request, pk=None):
        stock = self.get_object()
        serializer = StockDetailsSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        before_snapshot = StockRecordSerializer(stock).data

        stock = update_stock_details(stock, actor=request.user, **serializer.validated_data)
        data = StockRecordSerializer(stock).data
        create_audit_log_from_request(
            request,
            action="stock.update",
            entity="stock",
            entity_id=stock.id,
            before_snapshot=before_snapshot,
            after_snapshot=data,
            location=stock.location,
        )
        return Response(data)


class TransferRequestViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = TransferRequest.objects.all()
    serializer_class = TransferRequestSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "create": "stock.transfer.request",
        "approve": "stock.transfer.approve",
        "reject": "stock.transfer.approve",
        "bulk_resolve": "stock.transfer.bulk_approve",
        "auto_approve": "stock.transfer.bulk_approve",
    }

    def get_queryset(self):
        qs = super().get_queryset()
        user = self.request.user
        if not (user.is_superuser or user_has_capability(user, "inventory.view.all_locations")):
            location = getattr(user, "location", "")
            qs = qs.filter(Q(from_location=location) | Q(to_location=location)) if location else qs.none()

        status_filter = self.request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter)
        return qs.order_by("-requested_at")

    def create(self, request):
        serializer = TransferRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = request.user
        from_location = serializer.validated_data["from_location"]
        if not (user.is_superuser or user_has_capability(user, "inventory.view.all_locations")) and from_location != user.location:
            raise PolicyViolation("You can only request transfers from your own location.")

        transfer = request_transfer(
            requester=user,
            policy=load_policy(),
            auto_resolve=settings.INVENTORY_AUTO_APPROVE_ON_REQUEST,
            **serializer.validated_data,
        )
        return Response(TransferRequestSerializer(transfer).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        transfer = self.get_object()
        transfer = resolve(transfer.id, APPROVE, request.user, policy=load_policy())
        return Response(TransferRequestSerializer(transfer).data)

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        transfer = self.get_object()
        serializer = TransferRejectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        transfer = resolve(transfer.id, REJECT, request.user, reason=serializer.validated_data.get("reason"))
        return Response(TransferRequestSerializer(transfer).data)

    @action(detail=False, methods=["post"], url_path="bulk-resolve")
    def bulk_resolve(self, request):
        serializer = BulkResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        results = bulk_resolve(
            serializer.validated_data["request_ids"],
            serializer.validated_data["decision"],
            request.user,
            reason=serializer.validated_data.get("reason"),
            policy=load_policy(),
        )
        return Response(_results_payload(results))

    @action(detail=False, methods=["post"], url_path="auto-approve")
    def auto_approve(self, request):
        results = auto_approve(request.user, policy=load_policy())
        return Response(_results_payload(results))


def _results_payload(results):
    succeeded = sum(1 for result in results if result.ok)
    return {
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
        "results": [result.as_dict() for result in results],
    }


class LedgerView(generics.ListAPIView):
    serializer_class = LedgerEntrySerializer
    pagination_class = LedgerResultsSetPagination
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "ledger.view"}

    def get_queryset(self):
        serializer = LedgerQuerySerializer(data=self.request.query_params)
        serializer.is_valid(raise_exception=True)
        return query_entries(**serializer.validated_data)


class ApprovalPolicyView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "approval.policy.view", "put": "approval.policy.manage"}

    def get(self, request):
        return Response(load_policy().as_dict())

    def put(self, request):
        serializer = ApprovalPolicySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        snapshot = save_policy(
            actor=request.user,
            expected_version=data["version"],
            require_approval=data["require_approval"],
            auto_approve_below=data["auto_approve_below"],
            allowed_locations=data["allowed_locations"],
            request_id=get_request_id(request),
        )
        return Response(snapshot.as_dict())
