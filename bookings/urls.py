from django.urls import path
from rest_framework.routers import DefaultRouter

from bookings.views import BookingViewSet, GarageBookingsView, ServiceViewSet

router = DefaultRouter()
router.register(r"bookings", BookingViewSet, basename="booking")
router.register(r"services", ServiceViewSet, basename="service")

urlpatterns = [
    path("garages/<str:garage_id>/bookings/", GarageBookingsView.as_view(), name="garage-bookings"),
] + router.urls
