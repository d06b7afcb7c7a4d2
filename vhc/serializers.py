from rest_framework import serializers

from vhc.models import VHCResponse, VHCTemplate
from vhc.scoring import title_for_value


class VHCTemplateSerializer(serializers.ModelSerializer):
    class Meta:
        model = VHCTemplate
        fields = ["id", "version", "title", "is_active", "sections", "created_at", "updated_at"]
        read_only_fields = fields


class VHCResponseSerializer(serializers.ModelSerializer):
    template_id = serializers.UUIDField(source="template.id", read_only=True)
    assigned_to_name = serializers.CharField(source="assigned_to.display_name", read_only=True, default=None)
    created_by_name = serializers.CharField(source="created_by.display_name", read_only=True, default=None)
    scores = serializers.SerializerMethodField()
    progress = serializers.DictField(read_only=True)
    answer_titles = serializers.SerializerMethodField()

    class Meta:
        model = VHCResponse
        fields = [
            "id",
            "template_id",
            "template_version",
            "powertrain",
            "status",
            "vehicle_id",
            "booking",
            "service_codes",
            "assigned_to",
            "assigned_to_name",
            "assigned_by",
            "due_at",
            "answers",
            "answer_titles",
            "scores",
            "progress",
            "created_by",
            "created_by_name",
            "created_at",
            "updated_at",
            "submitted_at",
            "approved_by",
            "approved_at",
        ]
        read_only_fields = fields

    def get_scores(self, obj):
        return {"section": obj.section_scores, "total": obj.total_score}

    def get_answer_titles(self, obj):
        return {answer["item_id"]: title_for_value(answer.get("value")) for answer in obj.answers}


class VHCResponseCreateSerializer(serializers.Serializer):
    template_id = serializers.UUIDField()
    powertrain = serializers.ChoiceField(choices=VHCResponse.Powertrain.choices)
    vehicle_id = serializers.CharField(max_length=64)
    booking_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    service_codes = serializers.ListField(child=serializers.CharField(max_length=64), required=False, default=list)
    assigned_to = serializers.UUIDField(required=False, allow_null=True, default=None)
    due_at = serializers.DateTimeField(required=False, allow_null=True, default=None)


class VHCAnswerSerializer(serializers.Serializer):
    item_id = serializers.CharField(max_length=64)
    value = serializers.JSONField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    photos = serializers.ListField(child=serializers.CharField(), required=False)


class VHCAnswersSerializer(serializers.Serializer):
    answers = VHCAnswerSerializer(many=True)
