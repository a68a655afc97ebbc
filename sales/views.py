from rest_framework import mixins, status, viewsets
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.exceptions import InvalidInput, PolicyViolation
from common.permissions import RoleCapabilityPermission, user_has_capability
from core.views import scoped_queryset_for_user
from sales.models import SaleRecord
from sales.serializers import SaleCreateSerializer, SaleRecordSerializer
from sales.services import sell


class SaleViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = SaleRecord.objects.select_related("sold_by")
    serializer_class = SaleRecordSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "sales.view",
        "retrieve": "sales.view",
        "create": "sales.pos.access",
    }

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        location = self.request.query_params.get("location")
        item_code = self.request.query_params.get("item_code")
        if location:
            qs = qs.filter(location=location)
        if item_code:
            qs = qs.filter(item_code=item_code)
        return qs.order_by("-sold_at")

    def create(self, request):
        serializer = SaleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = request.user
        location = serializer.validated_data.get("location") or user.location
        if not location:
            raise InvalidInput({"location": "This field is required."})
        if location != user.location and not (user.is_superuser or user_has_capability(user, "sales.pos.any_location")):
            raise PolicyViolation("You can only sell from your own location.")

        sale = sell(
            item_code=serializer.validated_data["item_code"],
            location=location,
            quantity=serializer.validated_data["quantity"],
            actor=user,
            custom_price=serializer.validated_data.get("custom_price"),
        )
        return Response(SaleRecordSerializer(sale).data, status=status.HTTP_201_CREATED)
