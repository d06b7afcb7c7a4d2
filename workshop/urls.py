from rest_framework.routers import DefaultRouter

from workshop.views import ApprovalViewSet, JobSheetViewSet

router = DefaultRouter()
router.register(r"job-sheet", JobSheetViewSet, basename="job-sheet")
router.register(r"approvals", ApprovalViewSet, basename="approval")

urlpatterns = router.urls
