from django.conf import settings
from django.db import models


class Business(models.Model):
    """
    Tenant and CFDI issuer profile.

    The issuance pipeline only reads these fields; they are maintained by the
    company settings screens.
    """

    name = models.CharField(max_length=255, unique=True, help_text="Legal name (razón social).")
    owner_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="businesses",
    )
    rfc = models.CharField(max_length=13, help_text="Issuer tax id (RFC), 12 or 13 characters.")
    tax_regime = models.CharField(
        max_length=3,
        blank=True,
        help_text="SAT c_RegimenFiscal code, e.g. '601'.",
    )
    postal_code = models.CharField(
        max_length=5,
        blank=True,
        help_text="Expedition postal code (LugarExpedicion).",
    )
    certificate_number = models.CharField(
        max_length=20,
        blank=True,
        help_text="CSD certificate number (NoCertificado).",
    )
    logo = models.FileField(upload_to="logos/", blank=True)
    pac_user = models.CharField(max_length=255, blank=True)
    pac_api_key = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["owner_user"],
                name="uniq_business_per_owner",
            ),
        ]

    def __str__(self):
        return self.name


class Customer(models.Model):
    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="customers",
    )
    name = models.CharField(max_length=255)
    rfc = models.CharField(max_length=13)
    email = models.EmailField(max_length=255, blank=True, null=True)
    postal_code = models.CharField(max_length=5, blank=True)
    tax_regime = models.CharField(max_length=3, blank=True)
    cfdi_use = models.CharField(
        max_length=4,
        default="G03",
        help_text="Default SAT c_UsoCFDI code for invoices to this customer.",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "name"],
                name="uniq_customer_per_business_name",
            )
        ]

    def __str__(self):
        return self.name
