from django.urls import path
from . import views

urlpatterns = [
    path("tenants/", views.tenants_view, name="tenant-list"),
    path("tenants/<uuid:tenant_id>/", views.tenant_detail_view, name="tenant-detail"),
    path("versions/", views.versions_view, name="mautic-versions"),
    path("auth/login/", views.login_view, name="login"),
    path("auth/logout/", views.logout_view, name="logout"),
    path("auth/me/", views.me_view, name="me"),
]
