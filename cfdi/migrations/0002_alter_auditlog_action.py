from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('cfdi', '0001_initial'),
    ]

    operations = [
        migrations.AlterField(
            model_name='auditlog',
            name='action',
            field=models.CharField(choices=[('INVOICE_CREATE', 'Invoice created'), ('INVOICE_STAMP', 'Invoice stamped'), ('INVOICE_CANCEL', 'Invoice canceled'), ('PAYMENT_CREATE', 'Payment created'), ('PAYMENT_STAMP', 'Payment stamped'), ('PAYMENT_CANCEL', 'Payment canceled'), ('PAYMENT_DISCARD', 'Draft payment discarded'), ('SERIES_CREATE', 'Series created')], max_length=32),
        ),
    ]
