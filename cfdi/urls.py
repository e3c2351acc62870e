from django.urls import path

from . import views

app_name = "cfdi"

urlpatterns = [
    path("series/", views.api_series_create, name="series_create"),
    path("invoices/", views.api_invoice_create, name="invoice_create"),
    path("invoices/<int:invoice_id>/", views.api_invoice_detail, name="invoice_detail"),
    path("invoices/<int:invoice_id>/stamp/", views.api_invoice_stamp, name="invoice_stamp"),
    path("invoices/<int:invoice_id>/cancel/", views.api_invoice_cancel, name="invoice_cancel"),
    path("invoices/<int:invoice_id>/pdf/", views.api_invoice_pdf, name="invoice_pdf"),
    path("invoices/<int:invoice_id>/xml/", views.api_invoice_xml, name="invoice_xml"),
    path("payments/", views.api_payment_create, name="payment_create"),
    path("payments/<int:payment_id>/", views.api_payment_detail, name="payment_detail"),
    path("payments/<int:payment_id>/stamp/", views.api_payment_stamp, name="payment_stamp"),
    path("payments/<int:payment_id>/cancel/", views.api_payment_cancel, name="payment_cancel"),
    path("payments/<int:payment_id>/discard/", views.api_payment_discard, name="payment_discard"),
    path("payments/<int:payment_id>/pdf/", views.api_payment_pdf, name="payment_pdf"),
]
