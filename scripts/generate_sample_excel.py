import os
import pandas as pd

# Columns accepted by /api/products/import-prices and `buy-orders import-prices`
columns = ['ProductId', 'NewPrice', 'Currency']

rows = [
    ['jacket-1', 95.00, 'GBP'],
    ['trail-shoe', 79.99, 'GBP'],
    # Currency is optional; the product's own currency is used when blank
    ['mug-12', 8.50, ''],
]

df = pd.DataFrame(rows, columns=columns)

os.makedirs('static', exist_ok=True)

xlsx_path = os.path.join('static', 'sample_prices.xlsx')
print('Writing Excel to:', xlsx_path)
df.to_excel(xlsx_path, index=False, sheet_name='Prices')

csv_path = os.path.join('static', 'sample_prices.csv')
print('Writing CSV to:', csv_path)
df.to_csv(csv_path, index=False)
print('Done')
