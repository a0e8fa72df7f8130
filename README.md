# qvmfilecopy

Tools for moving files between virtual machines over a plain byte stream,
usually the standard input and output of a qrexec service. Every command
reads from stdin and writes to stdout; none opens a connection of its own.

## What is included

- **File copy.** A sender walks files and directories and streams them to
  a receiver, which unpacks them below an incoming directory. Both ends keep
  a CRC-32 over everything that passes. At the end the receiver returns a
  status code and its checksum, and the sender checks both.
- **Disposable-VM exchange.** One side sends a single file; the other side
  saves it in a fresh temporary directory, opens it with a command, and
  sends it back only if its modification time changed.
- **Small helpers.** Clipboard text encoding and decoding, parsing of GUI
  mode requests, and opening a URL read from stdin.

## Installation

```
pip install .
```

With the test dependencies:

```
pip install .[test]
```

## Commands

| Command             | Role                                                         |
|---------------------|--------------------------------------------------------------|
| `qvm-file-receiver` | Receive a file stream on stdin and unpack it                 |
| `qvm-file-sender`   | Send the paths named on the command line to stdout           |
| `qvm-open-in-vm`    | Send one file to a disposable VM and take back the result    |
| `qvm-file-editor`   | Disposable-VM side: receive a file, open it, return changes  |
| `qvm-open-url`      | Read a URL from stdin and open it in the default browser     |

### Sending files

```
qvm-file-sender report.pdf photos/
```

The sender first adds up the total size of everything named, then sends
each argument under its base name. Directories are sent recursively, their
entries in sorted order. A directory's own entry is sent once before its
contents and once after them, so that its timestamps come out right on the
receiving side. Progress is written to stderr as a percentage. After the
end-of-transfer marker the sender reads the receiver's result from stdin;
it exits with 1 if the receiver reports an error or the checksums differ.

### Receiving files

```
QREXEC_REMOTE_DOMAIN=work qvm-file-receiver
```

The receiver takes the name of the sending VM from the
`QREXEC_REMOTE_DOMAIN` environment variable and unpacks into
`~/Documents/QubesIncoming/<domain>` (see `incoming_directory`). It applies
these rules:

- Existing files are never overwritten (`EEXIST` is reported back).
- Absolute symbolic links are refused (`EPERM`).
- Every path stays below the incoming directory; `..` cannot climb out.
- A `:` in a name becomes `_`.
- Names that are not valid UTF-8 are still turned into usable names.

When it stops it writes a result header to stdout. On failure the header
carries an errno-style code and the name of the last entry, and the same
code is the command's exit status.

### Disposable VMs

```
qvm-open-in-vm notes.txt
```

The base name is sent as a fixed 256-byte, zero-padded field (its tail is
kept if it is longer), followed by the contents; then stdout is closed.
Whatever comes back on stdin replaces the original file. If nothing comes
back, the original is left as it was.

```
qvm-file-editor [command ...]
```

The editor side reads the name field, refuses names holding `/` or `\`,
replaces characters such as spaces, `!`, `?`, `*` and brackets by `_`, and
writes the file into a new directory named by a UUID under the system temp
directory. It then runs the given command with the file's path appended;
without a command it uses `$VISUAL`, `$EDITOR` or the platform's opener
(`xdg-open`, `open -W`, or `start /wait`). A non-zero exit of the command
becomes the exit status. The temporary file and directory are removed
afterwards.

### Opening a URL

```
echo -n "https://example.com/" | qvm-open-url
```

Reads up to 4096 bytes from stdin and opens them with Python's
`webbrowser` module. An empty request exits with `EINVAL`.

## Using the library

```python
from qvmfilecopy.filecopy import CopyError, FileHeader, copy_file

header = FileHeader.unpack(raw_bytes)
try:
    crc = copy_file(output, source, header.filelen, 0)
except CopyError as exc:
    print(exc.status, exc)
```

`copy_file` returns the updated CRC-32 and raises `CopyError` (carrying a
`CopyStatus`) when reading ends early or reading or writing fails.

- **`qvmfilecopy.filecopy`**: `FileHeader` and `ResultHeader` with
  `pack`/`unpack`; `copy_file`, `read_exact`, `CopyStatus`,
  `status_to_string`, `ProgressType`; the mode tests `is_regular`,
  `is_directory` and `is_link`; `ErrorReporter`, which writes messages to
  a stream, notifies a callback and raises `FileCopyError` for fatal ones.
- **`qvmfilecopy.names`**: `untrusted_name_to_path` converts name bytes
  from a peer into a local name and raises `NameTooLongError` when it does
  not fit.
- **`qvmfilecopy.receiver`**: `FileReceiver` unpacks a stream below a
  root directory, with optional byte and file-count limits;
  `TransferAborted`; `incoming_directory`.
- **`qvmfilecopy.sender`**: `FileSender` (`total_size`, `send_paths`,
  `wait_for_result`), `ProgressNotifier` and `split_timestamp`.
- **`qvmfilecopy.dvm`**: `sanitize_dvm_filename`, `pad_filename`,
  `send_file`, `receive_file`, `receive_into_temp` and `DispVMError`.
- **`qvmfilecopy.services`**: `prepare_clip_text`, `encode_clipboard`,
  `decode_clipboard`, `parse_gui_mode` with `GuiMode`, and `read_url`.

## What the package does not do

- It does not read or write the system clipboard; `encode_clipboard` and
  `decode_clipboard` only convert text to and from the bytes exchanged.
- It does not switch any GUI; `parse_gui_mode` only tells which mode a
  request asks for and names the event belonging to it.
- It shows no progress window or message boxes; progress and errors go to
  stderr.
- It does not establish the inter-VM channel itself; it expects to be
  started with stdin and stdout already connected to the peer.

## Running the tests

```
pytest
```