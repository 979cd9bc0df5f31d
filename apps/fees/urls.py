# fees/urls.py

from django.urls import path
from . import views

app_name = 'fees'

urlpatterns = [
    # =============================================================================
    # PAYMENT COLLECTION
    # =============================================================================
    path('v2/payments/', views.payments, name='payments'),

    # =============================================================================
    # STUDENT FEES
    # =============================================================================
    path('v2/students/<str:student_id>/fees/', views.student_fees, name='student_fees'),

    # =============================================================================
    # RECEIPTS
    # =============================================================================
    path('v2/receipts/<uuid:payment_id>/download/', views.receipt_download, name='receipt_download'),
]
