from django.contrib import admin
from django.urls import include, path

from core.views import CookieTokenRefreshView, EmailOrUsernameTokenObtainPairView, LogoutView

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/token/", EmailOrUsernameTokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("api/token/refresh/", CookieTokenRefreshView.as_view(), name="token_refresh"),
    path("api/logout/", LogoutView.as_view(), name="logout"),
    path("api/", include("core.urls")),
    path("api/", include("bookings.urls")),
    path("api/", include("workshop.urls")),
    path("api/", include("inventory.urls")),
    path("api/", include("billing.urls")),
    path("api/vhc/", include("vhc.urls")),
]
