from rest_framework import serializers

from bookings.models import Booking, BookingService, Service


class ServiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Service
        fields = [
            "id",
            "garage",
            "code",
            "name",
            "description",
            "category",
            "duration_minutes",
            "price",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "garage", "created_at", "updated_at"]

    def validate_code(self, value):
        value = value.strip()
        garage_id = self.context.get("garage_id") or getattr(self.instance, "garage_id", None)
        duplicates = Service.objects.filter(garage_id=garage_id, code=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise serializers.ValidationError("A service with this code already exists in your garage.")
        return value

    def validate_price(self, value):
        if value < 0:
            raise serializers.ValidationError("Price must be zero or greater.")
        return value


class BookingServiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingService
        fields = ["id", "service", "service_code", "name", "description", "duration_minutes", "price", "source", "position", "added_at"]
        read_only_fields = fields


class BookingSerializer(serializers.ModelSerializer):
    services = BookingServiceSerializer(many=True, read_only=True)
    technician_name = serializers.CharField(source="technician.display_name", read_only=True, default=None)
    vehicle_info = serializers.CharField(read_only=True)
    job_sheet_id = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = [
            "id",
            "garage",
            "customer_name",
            "customer_phone",
            "customer_email",
            "vehicle_make",
            "vehicle_model",
            "vehicle_year",
            "vehicle_license",
            "vehicle_vin",
            "vehicle_info",
            "date",
            "start_time",
            "end_time",
            "bay",
            "technician",
            "technician_name",
            "status",
            "requires_diagnosis",
            "diagnosis_notes",
            "notes",
            "services",
            "job_sheet_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_job_sheet_id(self, obj):
        job_sheet = getattr(obj, "job_sheet", None)
        return str(job_sheet.id) if job_sheet else None


class BookingCustomerSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    phone = serializers.CharField(max_length=64)
    email = serializers.EmailField()


class BookingCarSerializer(serializers.Serializer):
    make = serializers.CharField(max_length=64)
    model = serializers.CharField(max_length=64)
    year = serializers.IntegerField(min_value=1900, max_value=2100)
    registration = serializers.CharField(max_length=32, required=False, allow_blank=True)
    license = serializers.CharField(max_length=32, required=False, allow_blank=True)
    vin = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")

    def validate(self, attrs):
        plate = attrs.pop("registration", "") or attrs.get("license", "")
        if not plate:
            raise serializers.ValidationError({"registration": "Vehicle registration is required."})
        attrs["license"] = plate.upper()
        return attrs


class BookingCreateSerializer(serializers.Serializer):
    REQUIRED_FIELDS = ("serviceId", "serviceName", "customer", "car", "date", "startTime", "endTime", "bay")

    serviceId = serializers.CharField(max_length=64)
    serviceName = serializers.CharField(max_length=255)
    customer = BookingCustomerSerializer()
    car = BookingCarSerializer()
    date = serializers.DateField()
    startTime = serializers.TimeField()
    endTime = serializers.TimeField()
    bay = serializers.CharField(max_length=32)
    technicianId = serializers.UUIDField(required=False, allow_null=True)
    requiresDiagnosis = serializers.BooleanField(required=False, default=False)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if attrs["endTime"] <= attrs["startTime"]:
            raise serializers.ValidationError({"endTime": "End time must be after start time."})
        return attrs


class BookingStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Booking.Status.choices)
