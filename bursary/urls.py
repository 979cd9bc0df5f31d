"""
URL configuration for the bursary project.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    # Django admin
    path('admin/', admin.site.urls),

    # Fees app - payment collection, receipts, student fee balances
    path('fees/', include(('fees.urls', 'fees'), namespace='fees')),
]
