from rest_framework.routers import DefaultRouter

from billing.views import InvoiceViewSet

router = DefaultRouter()
router.register(r"billings", InvoiceViewSet, basename="invoice")

urlpatterns = router.urls
