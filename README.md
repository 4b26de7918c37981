# teeregistry

`teeregistry` keeps an in-memory registry of SGX enclaves that have proven themselves through
Intel IAS remote attestation. It also provides an exchange-rate oracle that accepts rate updates
only from registered enclaves whose release (`mr_enclave`) is on a whitelist for the data source.

## Installation

```
pip install teeregistry
```

The only dependency is `cryptography`. It is used to check the IAS signature and the signing
certificate.

## Modules

- `teeregistry.der` reads DER length fields with bounds checks. It provides `safe_index` and
  `length_from_raw_data`. Bad input raises `CertificateFormatError`.
- `teeregistry.netscape` provides two classes:
  - `NetscapeComment.from_cert` pulls the attestation report, its signature and the signing
    certificate out of a certificate's Netscape comment extension.
  - `EphemeralKey.from_cert` pulls out the prime256v1 public key.
- `teeregistry.attestation` verifies IAS reports and parses them:
  - `verify_ias_report(cert_der)` does the whole check. It reads the Netscape comment and checks
    the RSA PKCS#1 v1.5 SHA-256 signature with `verify_signature`. It then uses
    `verify_server_cert` to check that the signing certificate was issued by the built-in IAS
    report-signing CA and was valid at a fixed validation time. Last, it calls `parse_report`.
  - `parse_report` reads the JSON report and returns an `SgxReport`. The report holds the
    following fields:
    - `mr_enclave`
    - `pubkey`, taken from the first 32 bytes of the report data
    - `status`, an `SgxStatus`
    - `timestamp`, in milliseconds
    - `build_mode`, either `SgxBuildMode.DEBUG` or `SgxBuildMode.PRODUCTION`
  - `SgxQuote.decode` decodes the binary quote.
  - Every failure raises `AttestationError`.
- `teeregistry.runtime` stands in for the chain the registry runs on:
  - `Origin` has three constructors: `root()`, `signed(account)` and `none()`.
  - `ensure_signed` and `ensure_root` raise `BadOrigin` when the origin is wrong.
  - `Balances` is a ledger with an existential deposit.
  - `Runtime` holds the following:
    - the block number
    - the current timestamp (`now`)
    - the list of emitted events (`events`)
    - the balances
    - the configuration values
- `teeregistry.teerex` contains `Teerex`, the enclave registry, along with its event classes,
  `Enclave` and `Request`.
- `teeregistry.teeracle` contains `Teeracle`, the exchange-rate oracle, along with its event
  classes and `to_u32f32`.
- `teeregistry.weights` provides the fixed dispatch weights:
  - `TeerexWeightInfo` charges storage reads and writes through a `DbWeight`. The default is
    `ROCKS_DB_WEIGHT`.
  - `TeeracleWeightInfo` returns a flat weight for each call.
- `teeregistry.testdata` holds known attestation fixture values and a few helpers. The values
  include measurements, timestamps and `URL`. The helpers are `IasSetup`, `get_signer` and
  `test_enclave`.

## The runtime

`Runtime(allow_sgx_debug_mode=True, endowed=None, ...)` creates the chain state. Its keyword
arguments also set the following limits:

- `moments_per_day`
- `max_silence_time`
- `minimum_period`
- `max_whitelisted_releases`

When `endowed` is not given, one built-in account is endowed with `1 << 60`.

`set_timestamp(moment)` may be called once per block. After the first call, each new timestamp
must be at least `minimum_period` later than the one before. The call runs every registered
timestamp hook. `run_to_block(n)` moves to block `n`, and it requires that the timestamp was set
in the current block.

A call that fails raises a `DispatchError` subclass:

- `BadOrigin` when the origin is wrong
- `TeerexError` for errors from the registry
- `TeeracleError` for errors from the oracle

For `TeerexError` and `TeeracleError`, the `name` attribute tells you which error it was, for
example `"EnclaveIsNotRegistered"`. Calls that succeed append event objects to `runtime.events`.

## The enclave registry

`Teerex(runtime, skip_ias_check=False, report_verifier=None)` registers
`on_timestamp_set` as a timestamp hook. Each time the timestamp is set, every enclave whose
timestamp is older than `max_silence_time` is unregistered.

`register_enclave(origin, ra_report, worker_url)` registers an enclave. The checks depend on
`skip_ias_check`:

- When it is false, the report goes through `verify_ias_report`, or through `report_verifier` if
  one is given. The report's public key must equal the sender. The report must be less than
  `moments_per_day` older than `runtime.now`. Debug-mode enclaves are rejected unless the runtime
  allows them.
- When it is true, the report is not verified. The first 32 bytes of the report, when there are
  that many, become the measurement, and the enclave's timestamp is `runtime.now`.

Registering again from the same account updates the stored entry. Indices start at 1. Removal
swaps the last entry into the hole, so the indices stay dense.

`Teerex` also provides these calls:

- `unregister_enclave`
- `call_worker`
- `confirm_processed_parentchain_block`
- `shield_funds`
- `unshield_funds`, which pays out once per call hash and counts repeated confirmations in
  `confirmed_calls`

It provides these queries:

- `enclave`
- `enclave_count`
- `enclave_index`
- `list_enclaves`
- `is_registered_enclave`

## The exchange-rate oracle

```python
from teeregistry.runtime import Origin, Runtime
from teeregistry.teerex import Teerex
from teeregistry.teeracle import Teeracle

runtime = Runtime()
teerex = Teerex(runtime, skip_ias_check=True)
oracle = Teeracle(runtime, teerex)

enclave_account = bytes(range(32))
mrenclave = bytes([7] * 32)

runtime.set_timestamp(1_587_899_785_000)
teerex.register_enclave(Origin.signed(enclave_account), mrenclave, b"ws://127.0.0.1:9991")

oracle.add_to_whitelist(Origin.root(), "https://rates.example.com", mrenclave)
oracle.update_exchange_rate(
    Origin.signed(enclave_account), "https://rates.example.com", "DOT/USD", 43.65
)
print(float(oracle.exchange_rate("DOT/USD", "https://rates.example.com")))
```

Rates are stored as `fractions.Fraction` values rounded to unsigned 32.32 fixed point by
`to_u32f32`. Setting a rate to `None` or to zero deletes it. `exchange_rate` returns zero for a
pair that has no rate stored, and `has_exchange_rate` tells you whether one is stored.

The following limits apply:

| Input | Limit |
| --- | --- |
| Attestation report | 4096 bytes |
| Worker URL | 256 bytes |
| Trading pair | 11 bytes (UTF-8) |
| Market data source | 40 bytes (UTF-8) |
| Whitelisted releases per source | `max_whitelisted_releases` (default 10) |

## What this package does not do

- The state lives only in memory. Nothing is persisted and nothing is shared between processes.
- There is no network layer, no transaction handling and no command-line program.
- No real attestation certificates are shipped. `teeregistry.testdata` holds only the known
  measurement, timestamp and URL values. To register an enclave with full verification, you must
  supply your own IAS certificate, or pass a `report_verifier`.