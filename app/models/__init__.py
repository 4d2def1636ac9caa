# Automatically load all models so metadata knows them
from app.models.receipt_model import Receipt
from app.models.payment_transaction_model import PaymentTransactionRow
