from rest_framework.routers import DefaultRouter

from inventory.views import InventoryItemViewSet, StockMovementViewSet

router = DefaultRouter()
router.register(r"inventory", InventoryItemViewSet, basename="inventory-item")
router.register(r"stock-movement", StockMovementViewSet, basename="stock-movement")

urlpatterns = router.urls
