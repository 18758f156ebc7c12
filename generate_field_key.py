from juanlms.crypto.keys import generate_key

# Prints a new key for FIELD_ENCRYPTION_KEY without needing a configured app,
# unlike `flask fields generate-key`.
print(generate_key("hex"))
