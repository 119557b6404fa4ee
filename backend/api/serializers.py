from __future__ import annotations

from rest_framework import serializers

from apps.budget.models import Allocation, BudgetPool, PoolTransfer, validate_allocation_rules
from apps.content.models import Announcement, Content
from apps.demandes.models import Demande, DemandeDocument, DemandeStatusHistory
from apps.demandes.services.workflow import DECISIONS
from apps.notifications.models import Notification, NotificationDelivery
from apps.payments.models import Payment
from core.rbac.checker import rbac
from identity.models import CoreIdentity


class MaskedFieldsMixin:
    """Retire de la représentation les champs masqués pour le rôle actif."""

    masking_resource = ""

    def to_representation(self, instance):  # type: ignore[override]
        data = super().to_representation(instance)
        role = self.context.get("role_active")
        if role is None and self.context.get("request") is not None:
            role = getattr(self.context["request"], "role_active", None)
        decision = rbac.decision(role=role or "", action="read", resource=self.masking_resource)
        for field in decision.masked_fields:
            data.pop(field, None)
        return data


class CoreIdentitySerializer(MaskedFieldsMixin, serializers.ModelSerializer):
    masking_resource = "CORE_IDENTITY"
    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = CoreIdentity
        fields = (
            "id",
            "email",
            "phone",
            "first_name",
            "last_name",
            "full_name",
            "role",
            "wilaya",
            "eligibility_score",
            "email_notifications",
            "sms_notifications",
            "push_device_tokens",
            "is_active",
            "metadata",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "created_at", "updated_at")


class IdentitySummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = CoreIdentity
        fields = ("id", "email", "first_name", "last_name", "role")


class DemandeDocumentSerializer(serializers.ModelSerializer):
    class Meta:
        model = DemandeDocument
        fields = ("id", "file", "original_name", "content_type", "size", "uploaded_by", "uploaded_at")
        read_only_fields = fields


class DemandeStatusHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = DemandeStatusHistory
        fields = ("id", "from_status", "to_status", "changed_by", "motif", "created_at")
        read_only_fields = fields


class DemandeSerializer(serializers.ModelSerializer):
    user = IdentitySummarySerializer(read_only=True)
    assigned_to = IdentitySummarySerializer(read_only=True)
    documents = DemandeDocumentSerializer(many=True, read_only=True)
    history = DemandeStatusHistorySerializer(many=True, read_only=True)

    class Meta:
        model = Demande
        fields = (
            "id",
            "reference",
            "description",
            "category",
            "montant",
            "approved_amount",
            "paid_amount",
            "status",
            "user",
            "assigned_to",
            "payment",
            "motif",
            "documents_due_at",
            "submitted_at",
            "reviewed_at",
            "reviewed_by",
            "documents",
            "history",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class DemandeCreateSerializer(serializers.Serializer):
    description = serializers.CharField()
    montant = serializers.DecimalField(max_digits=12, decimal_places=2)
    category = serializers.ChoiceField(choices=Demande.Category.choices, default=Demande.Category.OTHER)
    user = serializers.PrimaryKeyRelatedField(queryset=CoreIdentity.objects.filter(is_active=True), required=False)


class DemandeReviewSerializer(serializers.Serializer):
    decision = serializers.ChoiceField(choices=sorted(DECISIONS))
    motif = serializers.CharField(required=False, allow_blank=True)
    approved_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    documents_due_at = serializers.DateTimeField(required=False, allow_null=True)


class DemandeAssignSerializer(serializers.Serializer):
    case_worker_id = serializers.UUIDField()


class MotifSerializer(serializers.Serializer):
    motif = serializers.CharField(required=False, allow_blank=True, default="")


class DocumentUploadSerializer(serializers.Serializer):
    file = serializers.FileField()


class BudgetPoolSerializer(serializers.ModelSerializer):
    allocated_total = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    utilization_rate = serializers.DecimalField(max_digits=7, decimal_places=4, read_only=True)

    class Meta:
        model = BudgetPool
        fields = (
            "id",
            "reference",
            "name",
            "description",
            "department",
            "fiscal_year",
            "montant",
            "remaining",
            "allocated_total",
            "utilization_rate",
            "status",
            "start_date",
            "end_date",
            "allocation_rules",
            "alert_thresholds",
            "managed_by",
            "created_by",
            "version",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class BudgetPoolWriteSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200)
    fiscal_year = serializers.IntegerField(min_value=2000, max_value=2100)
    montant = serializers.DecimalField(max_digits=14, decimal_places=2)
    department = serializers.CharField(max_length=100, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False, allow_null=True)
    allocation_rules = serializers.JSONField(required=False)
    alert_thresholds = serializers.JSONField(required=False)
    managed_by = serializers.PrimaryKeyRelatedField(
        queryset=CoreIdentity.objects.filter(is_active=True), required=False, allow_null=True
    )

    def validate_allocation_rules(self, value):
        validate_allocation_rules(value)
        return value


class PoolStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=BudgetPool.Status.choices)


class AllocateSerializer(serializers.Serializer):
    demande = serializers.PrimaryKeyRelatedField(queryset=Demande.objects.all())
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    payment_method = serializers.ChoiceField(choices=Payment.Method.choices, required=False)


class TransferSerializer(serializers.Serializer):
    destination = serializers.PrimaryKeyRelatedField(queryset=BudgetPool.objects.all())
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class AllocationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Allocation
        fields = ("id", "pool", "demande", "amount", "status", "allocated_by", "notes", "created_at")
        read_only_fields = fields


class PoolTransferSerializer(serializers.ModelSerializer):
    class Meta:
        model = PoolTransfer
        fields = ("id", "source", "destination", "amount", "reason", "transferred_by", "created_at")
        read_only_fields = fields


class PaymentSerializer(MaskedFieldsMixin, serializers.ModelSerializer):
    masking_resource = "PAYMENT"
    source = serializers.SerializerMethodField()
    destination = serializers.SerializerMethodField()
    total_fees = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    net_amount = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = Payment
        fields = (
            "id",
            "reference",
            "payment_method",
            "amount",
            "source",
            "destination",
            "demande",
            "allocation",
            "status",
            "scheduled_date",
            "retry_count",
            "max_retries",
            "retry_after",
            "transaction_id",
            "failure_reason",
            "processing_fee",
            "bank_fee",
            "total_fees",
            "net_amount",
            "processed_by",
            "processed_at",
            "delivered_at",
            "cancelled_at",
            "cancel_reason",
            "internal_notes",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def get_source(self, obj: Payment):
        return {"type": obj.source_type, "id": str(obj.source_id)}

    def get_destination(self, obj: Payment):
        return {"type": obj.destination_type, "id": str(obj.destination_id)}


class PaymentCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentScheduleSerializer(serializers.Serializer):
    scheduled_date = serializers.DateTimeField()


class InternalNoteSerializer(serializers.Serializer):
    note = serializers.CharField()


class NotificationDeliverySerializer(serializers.ModelSerializer):
    class Meta:
        model = NotificationDelivery
        fields = ("channel", "enabled", "delivered", "delivered_at", "attempts", "last_attempt", "error_message")
        read_only_fields = fields


class NotificationSerializer(serializers.ModelSerializer):
    deliveries = NotificationDeliverySerializer(many=True, read_only=True)

    class Meta:
        model = Notification
        fields = (
            "id",
            "title",
            "message",
            "type",
            "category",
            "priority",
            "recipient",
            "related_demande",
            "related_payment",
            "related_budget_pool",
            "related_announcement",
            "action_required",
            "action_url",
            "status",
            "is_read",
            "read_at",
            "is_clicked",
            "clicked_at",
            "sent_at",
            "retry_count",
            "max_retries",
            "retry_after",
            "scheduled_for",
            "expires_at",
            "deliveries",
            "created_at",
        )
        read_only_fields = fields


class NotificationContentSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=200)
    message = serializers.CharField(max_length=1000)
    type = serializers.ChoiceField(choices=Notification.Type.choices, default=Notification.Type.SYSTEM)
    category = serializers.ChoiceField(choices=Notification.Category.choices, default=Notification.Category.INFO)
    priority = serializers.ChoiceField(choices=Notification.Priority.choices, default=Notification.Priority.NORMAL)
    channels = serializers.ListField(
        child=serializers.ChoiceField(choices=NotificationDelivery.Channel.choices), required=False, allow_empty=False
    )
    action_required = serializers.BooleanField(default=False)
    action_url = serializers.CharField(required=False, allow_blank=True, default="")
    scheduled_for = serializers.DateTimeField(required=False, allow_null=True, default=None)
    expires_at = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def validate(self, attrs):
        scheduled_for, expires_at = attrs.get("scheduled_for"), attrs.get("expires_at")
        if scheduled_for and expires_at and expires_at <= scheduled_for:
            raise serializers.ValidationError({"expires_at": "Doit être postérieure à scheduled_for."})
        return attrs


class NotificationCreateSerializer(NotificationContentSerializer):
    recipient = serializers.PrimaryKeyRelatedField(queryset=CoreIdentity.objects.filter(is_active=True))


class NotificationBulkSerializer(NotificationContentSerializer):
    target_roles = serializers.ListField(
        child=serializers.ChoiceField(choices=CoreIdentity.Role.choices), allow_empty=False
    )


class ContentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Content
        fields = ("id", "level", "name", "title", "text", "parent", "position", "created_at", "updated_at")
        read_only_fields = ("id", "created_at", "updated_at")


class AnnouncementSerializer(serializers.ModelSerializer):
    target_roles = serializers.ListField(
        child=serializers.ChoiceField(choices=CoreIdentity.Role.choices), required=False
    )

    class Meta:
        model = Announcement
        fields = (
            "id",
            "title",
            "body",
            "target_roles",
            "is_published",
            "published_at",
            "created_by",
            "created_at",
        )
        read_only_fields = ("id", "is_published", "published_at", "created_by", "created_at")
